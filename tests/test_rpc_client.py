from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from chaoswatch.adapters.instrumentation import InMemoryMetricsSink
from chaoswatch.adapters.rate_limit import AsyncTokenBucket
from chaoswatch.adapters.retry import BackoffPolicy
from chaoswatch.adapters.rpc_client import (
    JsonRpcClient,
    RpcErrorKind,
    RpcReliabilityConfig,
    RpcRequestError,
)


def _client(handler, metrics: InMemoryMetricsSink, *, max_attempts: int = 3) -> JsonRpcClient:
    return JsonRpcClient(
        url="https://rpc.test",
        limiter=AsyncTokenBucket(rate_per_sec=1000, burst=100),
        metrics=metrics,
        reliability=RpcReliabilityConfig(backoff=BackoffPolicy(max_attempts=max_attempts)),
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


@pytest.fixture
def no_sleep(monkeypatch) -> list[float]:
    sleeps: list[float] = []

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    monkeypatch.setattr("chaoswatch.adapters.retry.asyncio.sleep", fake_sleep)
    return sleeps


def test_call_returns_result() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        seen.append(body)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": "0x10"})

    async def _run():
        client = _client(handler, InMemoryMetricsSink())
        try:
            return await client.call("eth_blockNumber")
        finally:
            await client.close()

    assert asyncio.run(_run()) == "0x10"
    assert seen[0]["method"] == "eth_blockNumber"
    assert seen[0]["params"] == []


def test_call_raises_rpc_error_for_error_object() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        error = {"code": -32000, "message": "execution reverted"}
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": error})

    async def _run():
        client = _client(handler, InMemoryMetricsSink())
        try:
            await client.call("eth_call", [{}, "latest"])
        finally:
            await client.close()

    with pytest.raises(RpcRequestError) as exc_info:
        asyncio.run(_run())
    assert exc_info.value.kind is RpcErrorKind.RPC
    assert exc_info.value.code == -32000
    assert "execution reverted" in str(exc_info.value)


def test_batch_matches_replies_by_id_and_flags_missing_ones() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        first, second, third = body
        return httpx.Response(
            200,
            json=[
                {"jsonrpc": "2.0", "id": second["id"], "error": {"message": "reverted"}},
                {"jsonrpc": "2.0", "id": first["id"], "result": "0x01"},
            ],
        )

    metrics = InMemoryMetricsSink()

    async def _run():
        client = _client(handler, metrics)
        try:
            return await client.batch([("eth_call", []), ("eth_call", []), ("eth_call", [])])
        finally:
            await client.close()

    replies = asyncio.run(_run())

    assert replies[0].ok and replies[0].result == "0x01"
    assert not replies[1].ok and replies[1].error == "reverted"
    assert not replies[2].ok
    assert metrics.counters["rpc_batched_requests"] == 3


def test_batch_rejected_as_single_object_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, json={"jsonrpc": "2.0", "id": None, "error": {"message": "batch too large"}}
        )

    async def _run():
        client = _client(handler, InMemoryMetricsSink())
        try:
            await client.batch([("eth_call", [])])
        finally:
            await client.close()

    with pytest.raises(RpcRequestError, match="batch too large"):
        asyncio.run(_run())


def test_server_errors_are_retried_with_backoff(no_sleep: list[float]) -> None:
    attempts = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["n"] += 1
        if attempts["n"] < 3:
            return httpx.Response(503, text="busy")
        body = json.loads(request.content)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": "0x2"})

    metrics = InMemoryMetricsSink()

    async def _run():
        client = _client(handler, metrics)
        try:
            return await client.call("eth_blockNumber")
        finally:
            await client.close()

    assert asyncio.run(_run()) == "0x2"
    assert attempts["n"] == 3
    assert len(no_sleep) == 2
    assert metrics.counters["rpc_retries"] == 2


def test_rate_limit_honours_retry_after(no_sleep: list[float]) -> None:
    attempts = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["n"] += 1
        if attempts["n"] == 1:
            return httpx.Response(429, headers={"Retry-After": "1.5"}, text="slow down")
        body = json.loads(request.content)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": "0x3"})

    metrics = InMemoryMetricsSink()

    async def _run():
        client = _client(handler, metrics)
        try:
            return await client.call("eth_blockNumber")
        finally:
            await client.close()

    assert asyncio.run(_run()) == "0x3"
    assert no_sleep == [1.5]
    assert metrics.counters["rpc_429_count"] == 1


def test_client_errors_are_not_retried(no_sleep: list[float]) -> None:
    attempts = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["n"] += 1
        return httpx.Response(400, text="bad request")

    metrics = InMemoryMetricsSink()

    async def _run():
        client = _client(handler, metrics)
        try:
            await client.call("eth_blockNumber")
        finally:
            await client.close()

    with pytest.raises(RpcRequestError) as exc_info:
        asyncio.run(_run())
    assert exc_info.value.kind is RpcErrorKind.CLIENT
    assert exc_info.value.status_code == 400
    assert attempts["n"] == 1
    assert no_sleep == []
    assert metrics.counters["rpc_errors"] == 1


def test_transport_failure_maps_to_network_error(no_sleep: list[float]) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async def _run():
        client = _client(handler, InMemoryMetricsSink(), max_attempts=2)
        try:
            await client.call("eth_blockNumber")
        finally:
            await client.close()

    with pytest.raises(RpcRequestError) as exc_info:
        asyncio.run(_run())
    assert exc_info.value.kind is RpcErrorKind.NETWORK
    assert len(no_sleep) == 1


def test_non_json_body_is_an_rpc_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>gateway</html>")

    async def _run():
        client = _client(handler, InMemoryMetricsSink())
        try:
            await client.call("eth_blockNumber")
        finally:
            await client.close()

    with pytest.raises(RpcRequestError, match="not JSON"):
        asyncio.run(_run())
