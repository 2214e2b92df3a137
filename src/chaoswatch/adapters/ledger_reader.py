from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from eth_abi.exceptions import EncodingError

from chaoswatch.adapters.rpc_client import JsonRpcClient, RpcErrorKind, RpcReply, RpcRequestError
from chaoswatch.domain.abi import AbiDecodeError, ContractCall, parse_quantity
from chaoswatch.domain.activity_events import ActivityEventSpec
from chaoswatch.domain.models import RawEventRecord, ReadFailed, ReadOk, ReadOutcome

logger = logging.getLogger(__name__)


class LedgerReadError(RuntimeError):
    """A ledger read produced no usable answer."""


class LedgerTransportError(LedgerReadError):
    """Every round trip of a fan-out failed; nothing was learned this cycle."""


class LedgerReader:
    def __init__(
        self,
        *,
        rpc: JsonRpcClient,
        batch_size: int = 100,
        batching: bool = True,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.rpc = rpc
        self.batch_size = batch_size
        self.batching = batching

    async def block_number(self) -> int:
        try:
            return parse_quantity(await self.rpc.call("eth_blockNumber"))
        except RpcRequestError as exc:
            raise LedgerReadError(f"eth_blockNumber failed: {exc}") from exc
        except ValueError as exc:
            raise LedgerReadError(f"eth_blockNumber returned garbage: {exc}") from exc

    async def read(self, call: ContractCall) -> ReadOutcome:
        (outcome,) = await self.read_many([call])
        return outcome

    async def read_many(self, calls: Sequence[ContractCall]) -> list[ReadOutcome]:
        outcomes: list[ReadOutcome | None] = [None] * len(calls)
        pending: list[tuple[int, dict[str, Any]]] = []
        for index, call in enumerate(calls):
            try:
                data = call.encode_data()
            except (EncodingError, TypeError, ValueError, OverflowError) as exc:
                outcomes[index] = ReadFailed(f"cannot encode {call.signature}: {exc}")
                continue
            pending.append((index, {"to": call.address, "data": data}))

        if pending:
            chunk_size = self.batch_size if self.batching else 1
            chunks = [pending[i : i + chunk_size] for i in range(0, len(pending), chunk_size)]
            results = await asyncio.gather(
                *(self._send_chunk(chunk) for chunk in chunks), return_exceptions=True
            )

            failed_chunks = 0
            for chunk, result in zip(chunks, results, strict=True):
                if isinstance(result, RpcRequestError):
                    failed_chunks += 1
                    for index, _ in chunk:
                        outcomes[index] = ReadFailed(f"transport: {result}")
                    continue
                if isinstance(result, BaseException):
                    raise result
                for (index, _), reply in zip(chunk, result, strict=True):
                    outcomes[index] = self._resolve(calls[index], reply)

            if failed_chunks == len(chunks):
                raise LedgerTransportError(
                    f"all {len(chunks)} read round trips failed ({len(pending)} calls)"
                )
            if failed_chunks:
                logger.warning(
                    "ledger_read_partial_transport_failure",
                    extra={
                        "extra": {
                            "failed_chunks": failed_chunks,
                            "total_chunks": len(chunks),
                            "calls": len(pending),
                        }
                    },
                )

        return [outcome if outcome is not None else ReadFailed("not sent") for outcome in outcomes]

    async def _send_chunk(self, chunk: list[tuple[int, dict[str, Any]]]) -> list[RpcReply]:
        if self.batching:
            return await self.rpc.batch([("eth_call", [params, "latest"]) for _, params in chunk])
        replies: list[RpcReply] = []
        for _, params in chunk:
            try:
                replies.append(RpcReply(result=await self.rpc.call("eth_call", [params, "latest"])))
            except RpcRequestError as exc:
                if exc.kind is not RpcErrorKind.RPC:
                    raise
                replies.append(RpcReply(error=str(exc)))
        return replies

    @staticmethod
    def _resolve(call: ContractCall, reply: RpcReply) -> ReadOutcome:
        if not reply.ok:
            return ReadFailed(str(reply.error))
        try:
            return ReadOk(call.decode_result(reply.result))
        except AbiDecodeError as exc:
            return ReadFailed(str(exc))

    async def scan_logs(
        self,
        spec: ActivityEventSpec,
        address: str,
        from_block: int,
        to_block: int,
    ) -> list[RawEventRecord]:
        if from_block > to_block:
            return []
        log_filter = {
            "address": address,
            "topics": [spec.event.topic0],
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
        }
        try:
            logs = await self.rpc.call("eth_getLogs", [log_filter])
        except RpcRequestError as exc:
            raise LedgerReadError(f"eth_getLogs {spec.event.name} failed: {exc}") from exc
        if not isinstance(logs, list):
            raise LedgerReadError(f"eth_getLogs {spec.event.name} returned {type(logs).__name__}")

        records: list[RawEventRecord] = []
        for log in logs:
            if not isinstance(log, dict) or log.get("removed"):
                continue
            try:
                records.append(spec.to_record(log))
            except (AbiDecodeError, KeyError, TypeError, ValueError) as exc:
                logger.warning(
                    "ledger_log_decode_skipped",
                    extra={
                        "extra": {
                            "event": spec.event.name,
                            "tx_hash": log.get("transactionHash"),
                            "error_type": type(exc).__name__,
                            "error_message": str(exc),
                        }
                    },
                )
        return records
