from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from functools import cached_property
from typing import Any

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import decode_hex, encode_hex, event_signature_to_log_topic
from eth_utils import function_signature_to_4byte_selector


class AbiDecodeError(ValueError):
    """Raised when a call result or log cannot be decoded with its declared types."""


def signature_arg_types(signature: str) -> tuple[str, ...]:
    open_at = signature.find("(")
    if open_at <= 0 or not signature.endswith(")"):
        raise ValueError(f"malformed signature: {signature!r}")
    inner = signature[open_at + 1 : -1].strip()
    if not inner:
        return ()
    return tuple(part.strip() for part in inner.split(","))


def _to_bytes(raw: str | bytes) -> bytes:
    if isinstance(raw, bytes):
        return raw
    try:
        return decode_hex(raw)
    except (TypeError, ValueError) as exc:
        raise AbiDecodeError(f"not hex data: {raw!r}") from exc


def _normalize(value: Any) -> Any:
    if isinstance(value, bytes):
        return encode_hex(value)
    if isinstance(value, str) and value.startswith("0x") and len(value) == 42:
        return value.lower()
    if isinstance(value, tuple | list):
        return tuple(_normalize(item) for item in value)
    return value


@dataclass(frozen=True)
class ContractCall:
    """One read-only `eth_call` against a view function."""

    address: str
    signature: str
    args: tuple[Any, ...] = ()
    output_types: tuple[str, ...] = ("uint256",)

    @cached_property
    def selector(self) -> bytes:
        return function_signature_to_4byte_selector(self.signature)

    def encode_data(self) -> str:
        arg_types = signature_arg_types(self.signature)
        return encode_hex(self.selector + encode(list(arg_types), list(self.args)))

    def decode_result(self, raw: str | bytes | None) -> Any:
        if raw is None:
            raise AbiDecodeError(f"{self.signature} returned no data")
        data = _to_bytes(raw)
        if not data:
            raise AbiDecodeError(f"{self.signature} returned empty data (reverted or no code)")
        try:
            decoded = decode(list(self.output_types), data)
        except (DecodingError, OverflowError, ValueError) as exc:
            raise AbiDecodeError(f"{self.signature}: {exc}") from exc
        values = tuple(_normalize(item) for item in decoded)
        return values[0] if len(values) == 1 else values


@dataclass(frozen=True)
class EventInput:
    name: str
    type: str
    indexed: bool = False


@dataclass(frozen=True)
class EventSpec:
    name: str
    inputs: tuple[EventInput, ...]

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(item.type for item in self.inputs)})"

    @cached_property
    def topic0(self) -> str:
        return encode_hex(event_signature_to_log_topic(self.signature))

    def decode_log(self, log: Mapping[str, Any]) -> dict[str, Any]:
        topics = [str(topic) for topic in log.get("topics") or []]
        if not topics or topics[0].lower() != self.topic0:
            raise AbiDecodeError(f"log is not a {self.name} event")

        indexed = [item for item in self.inputs if item.indexed]
        if len(topics) - 1 != len(indexed):
            raise AbiDecodeError(
                f"{self.name}: expected {len(indexed)} indexed topics, got {len(topics) - 1}"
            )

        args: dict[str, Any] = {}
        try:
            for item, topic in zip(indexed, topics[1:], strict=True):
                (value,) = decode([item.type], _to_bytes(topic))
                args[item.name] = _normalize(value)

            plain = [item for item in self.inputs if not item.indexed]
            if plain:
                data = _to_bytes(str(log.get("data") or "0x"))
                values = decode([item.type for item in plain], data)
                for item, value in zip(plain, values, strict=True):
                    args[item.name] = _normalize(value)
        except (DecodingError, OverflowError, ValueError) as exc:
            if isinstance(exc, AbiDecodeError):
                raise
            raise AbiDecodeError(f"{self.name}: {exc}") from exc

        return {item.name: args[item.name] for item in self.inputs}


def parse_quantity(value: Any) -> int:
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text:
        raise ValueError("empty quantity")
    return int(text, 16) if text.lower().startswith("0x") else int(text)
