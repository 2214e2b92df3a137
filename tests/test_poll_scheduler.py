from __future__ import annotations

import asyncio

import pytest

from chaoswatch.services.poll_scheduler import CancellationToken, PollJob, PollScheduler


def test_run_once_records_success_and_failure() -> None:
    async def ok(token: CancellationToken) -> None:
        return None

    async def boom(token: CancellationToken) -> None:
        raise RuntimeError("rpc down")

    scheduler = PollScheduler([PollJob("ok", 1.0, ok), PollJob("boom", 1.0, boom)])

    results = asyncio.run(scheduler.run_all_once())

    assert results == {"ok": True, "boom": False}
    assert scheduler.stats["ok"].succeeded == 1
    assert scheduler.stats["boom"].failed == 1
    assert scheduler.stats["boom"].last_error == "RuntimeError: rpc down"


def test_trigger_skips_while_previous_cycle_in_flight() -> None:
    async def _run() -> tuple[bool, bool, int]:
        release = asyncio.Event()

        async def slow(token: CancellationToken) -> None:
            await release.wait()

        scheduler = PollScheduler([PollJob("slow", 1.0, slow)])
        first = scheduler.trigger("slow")
        await asyncio.sleep(0)
        second = scheduler.trigger("slow")
        release.set()
        await asyncio.sleep(0.01)
        third = scheduler.trigger("slow")
        await scheduler.stop()
        return first and third, second, scheduler.stats["slow"].skipped_in_flight

    launched, skipped, skip_count = asyncio.run(_run())

    assert launched is True
    assert skipped is False
    assert skip_count == 1


def test_start_runs_jobs_on_interval_until_stopped() -> None:
    async def _run() -> tuple[int, bool]:
        calls: list[int] = []

        async def tick(token: CancellationToken) -> None:
            calls.append(1)

        scheduler = PollScheduler([PollJob("tick", 0.01, tick)])
        scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()
        count = len(calls)
        await asyncio.sleep(0.03)
        assert len(calls) == count
        return count, scheduler.token.alive

    count, alive = asyncio.run(_run())

    assert count >= 2
    assert alive is False


def test_deferred_job_waits_one_interval() -> None:
    async def _run() -> int:
        calls: list[int] = []

        async def flush(token: CancellationToken) -> None:
            calls.append(1)

        scheduler = PollScheduler([PollJob("flush", 10.0, flush, run_immediately=False)])
        scheduler.start()
        await asyncio.sleep(0.02)
        await scheduler.stop()
        return len(calls)

    assert asyncio.run(_run()) == 0


def test_stop_cancels_in_flight_cycle_and_token() -> None:
    async def _run() -> tuple[bool, int]:
        seen: list[CancellationToken] = []

        async def hang(token: CancellationToken) -> None:
            seen.append(token)
            await asyncio.sleep(3600)

        scheduler = PollScheduler([PollJob("hang", 1.0, hang)])
        scheduler.start()
        await asyncio.sleep(0.01)
        await scheduler.stop()
        return seen[0].alive, scheduler.stats["hang"].failed

    alive, failed = asyncio.run(_run())

    assert alive is False
    assert failed == 0


def test_restart_after_stop_is_rejected() -> None:
    async def noop(token: CancellationToken) -> None:
        return None

    async def _run() -> None:
        scheduler = PollScheduler([PollJob("noop", 1.0, noop)])
        scheduler.start()
        with pytest.raises(RuntimeError):
            scheduler.start()
        await scheduler.stop()
        with pytest.raises(RuntimeError):
            scheduler.start()

    asyncio.run(_run())


def test_invalid_jobs() -> None:
    async def noop(token: CancellationToken) -> None:
        return None

    with pytest.raises(ValueError):
        PollJob("bad", 0, noop)
    with pytest.raises(ValueError):
        PollScheduler([PollJob("a", 1.0, noop), PollJob("a", 2.0, noop)])
