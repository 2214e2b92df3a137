from __future__ import annotations

import pytest
from eth_abi import encode
from eth_utils import encode_hex, function_signature_to_4byte_selector

from chaoswatch.domain.abi import (
    AbiDecodeError,
    ContractCall,
    EventInput,
    EventSpec,
    parse_quantity,
    signature_arg_types,
)

TOKEN = "0xf9b40cd538d391e2437b53fb043cb47a61a02bc0"


def test_signature_arg_types() -> None:
    assert signature_arg_types("totalSupply()") == ()
    assert signature_arg_types("burnsBySource(uint8)") == ("uint8",)
    assert signature_arg_types("f(uint256, address)") == ("uint256", "address")
    with pytest.raises(ValueError):
        signature_arg_types("broken")


def test_encode_data_prefixes_selector() -> None:
    call = ContractCall(TOKEN, "burnsBySource(uint8)", args=(2,))

    data = call.encode_data()

    selector = encode_hex(function_signature_to_4byte_selector("burnsBySource(uint8)"))
    assert data.startswith(selector)
    assert data == selector + encode(["uint8"], [2]).hex()


def test_decode_single_value() -> None:
    call = ContractCall(TOKEN, "totalSupply()")

    assert call.decode_result(encode_hex(encode(["uint256"], [10**24]))) == 10**24


def test_decode_tuple_normalizes_addresses_and_bytes() -> None:
    call = ContractCall(
        TOKEN, "getShield(uint256)", args=(1,), output_types=("(uint8,address,bytes32)",)
    )
    operator = "0x65a1f64aee5c91b81ca131a6a69facfbdcfdb93c"
    raw = encode_hex(encode(["(uint8,address,bytes32)"], [(3, operator, b"\x01" * 32)]))

    (tier, address, digest) = call.decode_result(raw)

    assert tier == 3
    assert address == operator
    assert digest == "0x" + "01" * 32


def test_empty_result_is_a_decode_error() -> None:
    call = ContractCall(TOKEN, "totalSupply()")

    with pytest.raises(AbiDecodeError):
        call.decode_result("0x")
    with pytest.raises(AbiDecodeError):
        call.decode_result(None)


def test_event_decode_log_reads_topics_and_data() -> None:
    spec = EventSpec(
        "RewardsDistributed",
        (EventInput("agentId", "uint256", True), EventInput("amount", "uint256")),
    )
    log = {
        "topics": [spec.topic0, encode_hex(encode(["uint256"], [7]))],
        "data": encode_hex(encode(["uint256"], [5])),
    }

    assert spec.signature == "RewardsDistributed(uint256,uint256)"
    assert spec.decode_log(log) == {"agentId": 7, "amount": 5}


def test_event_decode_rejects_wrong_topic_or_shape() -> None:
    spec = EventSpec(
        "Heartbeat",
        (EventInput("agentId", "uint256", True), EventInput("blockNumber", "uint256")),
    )
    with pytest.raises(AbiDecodeError):
        spec.decode_log({"topics": ["0x" + "00" * 32], "data": "0x"})
    with pytest.raises(AbiDecodeError):
        spec.decode_log({"topics": [spec.topic0], "data": "0x"})


def test_parse_quantity() -> None:
    assert parse_quantity("0x1f") == 31
    assert parse_quantity("42") == 42
    assert parse_quantity(7) == 7
    with pytest.raises(ValueError):
        parse_quantity("")
