from __future__ import annotations

import asyncio

import httpx
import pytest

from chaoswatch import observability
from chaoswatch.adapters.instrumentation import InMemoryMetricsSink
from chaoswatch.adapters.offchain_api import OffchainApiClient
from chaoswatch.observability import NoopInstrumentation, _metric_name, get_instrumentation
from chaoswatch.services.offchain_service import OffchainFeedService
from chaoswatch.services.poll_scheduler import CancellationToken, PollJob, PollScheduler


class _FakeInstrumentation(NoopInstrumentation):
    def __init__(self) -> None:
        self.counters: list[tuple[str, int, dict[str, object] | None]] = []
        self.histograms: list[str] = []

    def counter(self, name: str, value: int = 1, *, attrs: dict | None = None) -> None:
        self.counters.append((name, value, attrs))

    def histogram(self, name: str, value: float, *, attrs: dict | None = None) -> None:
        self.histograms.append(name)


@pytest.fixture
def fake_instrumentation(monkeypatch: pytest.MonkeyPatch) -> _FakeInstrumentation:
    fake = _FakeInstrumentation()
    monkeypatch.setattr(observability, "_INSTRUMENTATION", fake)
    return fake


def test_metric_names_are_prefixed_and_cleaned() -> None:
    assert _metric_name("rpc_latency") == "chaoswatch.rpc_latency"
    assert _metric_name("bad name/with*chars") == "chaoswatch.bad_name_with_chars"
    assert _metric_name("***") == "chaoswatch.invalid_metric"


def test_noop_instrumentation_accepts_everything() -> None:
    noop = NoopInstrumentation()
    noop.counter("x", attrs={"a": 1})
    noop.gauge("x", 1.0)
    noop.histogram("x", 2.0)
    with noop.trace("span", attrs={"k": "v"}):
        pass
    noop.flush()
    noop.shutdown()


def test_stale_endpoint_is_counted(fake_instrumentation: _FakeInstrumentation) -> None:
    api = OffchainApiClient(
        base_url="https://api.test",
        metrics=InMemoryMetricsSink(),
        client=httpx.AsyncClient(
            base_url="https://api.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(502)),
        ),
    )
    service = OffchainFeedService(api=api)

    asyncio.run(service.poll_social())

    assert ("offchain_endpoint_stale", 1, {"endpoint": "social_feed"}) in (
        fake_instrumentation.counters
    )


def test_failed_poll_cycle_is_counted(fake_instrumentation: _FakeInstrumentation) -> None:
    async def boom(token: CancellationToken) -> None:
        raise RuntimeError("boom")

    scheduler = PollScheduler([PollJob("chain", 1.0, boom)])

    asyncio.run(scheduler.run_once("chain"))

    assert get_instrumentation() is fake_instrumentation
    assert ("poll_cycle_failed", 1, {"job": "chain"}) in fake_instrumentation.counters
    assert fake_instrumentation.histograms == ["poll_cycle_ms"]
