from __future__ import annotations

import itertools
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from time import monotonic
from typing import Any

import httpx

from chaoswatch.adapters.instrumentation import MetricsSink
from chaoswatch.adapters.rate_limit import AsyncTokenBucket
from chaoswatch.adapters.retry import (
    NO_RETRY,
    BackoffPolicy,
    RetryDecision,
    async_retry,
    compute_delay,
)
from chaoswatch.observability import get_instrumentation
from chaoswatch.security.redaction import redact_url

logger = logging.getLogger(__name__)


class RpcErrorKind(StrEnum):
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    CLIENT = "client"
    RPC = "rpc"


class RpcRequestError(RuntimeError):
    def __init__(
        self,
        *,
        kind: RpcErrorKind,
        message: str,
        status_code: int | None = None,
        headers: dict[str, str] | None = None,
        code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        self.code = code


@dataclass(frozen=True)
class RpcReliabilityConfig:
    connect_timeout_seconds: float = 5.0
    read_timeout_seconds: float = 10.0
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)


@dataclass(frozen=True)
class RpcReply:
    result: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _error_text(error: Any) -> str:
    if isinstance(error, dict):
        message = str(error.get("message") or "rpc error")
        code = error.get("code")
        return f"{message} (code={code})" if code is not None else message
    return str(error)


class JsonRpcClient:
    """Minimal async JSON-RPC 2.0 client with batching, rate limiting and retries."""

    def __init__(
        self,
        *,
        url: str,
        limiter: AsyncTokenBucket,
        metrics: MetricsSink | None = None,
        reliability: RpcReliabilityConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self.limiter = limiter
        self.metrics = metrics or MetricsSink()
        self.reliability = reliability or RpcReliabilityConfig()
        timeout = httpx.Timeout(
            self.reliability.read_timeout_seconds,
            connect=self.reliability.connect_timeout_seconds,
        )
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def close(self) -> None:
        await self._client.aclose()

    async def call(self, method: str, params: Sequence[Any] = ()) -> Any:
        request_id = next(self._ids)
        body = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": list(params)}
        payload = await self._post(body, label=method)
        if not isinstance(payload, dict):
            raise RpcRequestError(kind=RpcErrorKind.RPC, message=f"{method}: malformed response")
        if payload.get("error") is not None:
            error = payload["error"]
            raise RpcRequestError(
                kind=RpcErrorKind.RPC,
                message=f"{method}: {_error_text(error)}",
                code=error.get("code") if isinstance(error, dict) else None,
            )
        if "result" not in payload:
            raise RpcRequestError(kind=RpcErrorKind.RPC, message=f"{method}: missing result")
        return payload["result"]

    async def batch(self, requests: Sequence[tuple[str, Sequence[Any]]]) -> list[RpcReply]:
        """Send requests as one JSON-RPC batch; replies come back in request order.

        Per-request errors are returned as failed replies. Transport, HTTP and
        whole-batch rejections raise ``RpcRequestError``.
        """
        if not requests:
            return []
        ids = [next(self._ids) for _ in requests]
        body = [
            {"jsonrpc": "2.0", "id": request_id, "method": method, "params": list(params)}
            for request_id, (method, params) in zip(ids, requests, strict=True)
        ]
        payload = await self._post(body, label="batch")
        if isinstance(payload, dict):
            # Some nodes answer a rejected batch with a single error object.
            raise RpcRequestError(
                kind=RpcErrorKind.RPC,
                message=f"batch rejected: {_error_text(payload.get('error'))}",
            )
        if not isinstance(payload, list):
            raise RpcRequestError(kind=RpcErrorKind.RPC, message="batch: malformed response")

        by_id: dict[Any, dict[str, Any]] = {}
        for entry in payload:
            if isinstance(entry, dict) and "id" in entry:
                by_id[entry["id"]] = entry

        replies: list[RpcReply] = []
        for request_id in ids:
            entry = by_id.get(request_id)
            if entry is None:
                replies.append(RpcReply(error="missing response for request"))
            elif entry.get("error") is not None:
                replies.append(RpcReply(error=_error_text(entry["error"])))
            else:
                replies.append(RpcReply(result=entry.get("result")))
        self.metrics.inc("rpc_batched_requests", len(requests))
        return replies

    async def _post(self, body: Any, *, label: str) -> Any:
        async def _send() -> Any:
            await self.limiter.acquire()
            started = monotonic()
            try:
                with get_instrumentation().trace("rpc_post", attrs={"label": label}):
                    response = await self._client.post(self.url, json=body)
            except httpx.HTTPError as exc:
                raise RpcRequestError(
                    kind=RpcErrorKind.NETWORK,
                    message=f"{type(exc).__name__}: {redact_url(str(exc))}",
                ) from exc
            self.metrics.observe_ms("rpc_latency", (monotonic() - started) * 1000)

            if response.status_code == 429:
                self.metrics.inc("rpc_429_count")
            if response.status_code >= 400:
                self._raise_http_error(response)
            try:
                return response.json()
            except ValueError as exc:
                raise RpcRequestError(
                    kind=RpcErrorKind.RPC,
                    message=f"{label}: response is not JSON",
                    status_code=response.status_code,
                ) from exc

        def _classify(exc: Exception, attempt: int) -> RetryDecision:
            if not isinstance(exc, RpcRequestError):
                return NO_RETRY
            if exc.kind not in {RpcErrorKind.NETWORK, RpcErrorKind.SERVER, RpcErrorKind.RATE_LIMIT}:
                return NO_RETRY
            self.metrics.inc("rpc_retries")
            delay = compute_delay(
                attempt=attempt,
                policy=self.reliability.backoff,
                retry_after_header=exc.headers.get("retry-after"),
            )
            return RetryDecision(retry=True, delay_seconds=delay)

        try:
            return await async_retry(
                _send,
                max_attempts=self.reliability.backoff.max_attempts,
                classify=_classify,
                label=f"rpc:{label}",
            )
        except RpcRequestError as exc:
            self.metrics.inc("rpc_errors", attrs={"kind": exc.kind.value})
            raise

    def _raise_http_error(self, response: httpx.Response) -> None:
        kind = RpcErrorKind.CLIENT
        if response.status_code == 429:
            kind = RpcErrorKind.RATE_LIMIT
        elif response.status_code >= 500:
            kind = RpcErrorKind.SERVER
        raise RpcRequestError(
            kind=kind,
            message=f"HTTP {response.status_code}: {response.text[:300]}",
            status_code=response.status_code,
            headers=dict(response.headers),
        )
