from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from time import monotonic

from chaoswatch.logging_context import with_cycle_context
from chaoswatch.observability import get_instrumentation

logger = logging.getLogger(__name__)


class CancellationToken:
    """Liveness flag handed to every poll cycle.

    Cycles check ``alive`` after each await and drop their results once the
    owner has shut down.
    """

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def alive(self) -> bool:
        return not self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


CycleFn = Callable[[CancellationToken], Awaitable[object]]


@dataclass(frozen=True)
class PollJob:
    name: str
    interval_seconds: float
    cycle: CycleFn
    run_immediately: bool = True

    def __post_init__(self) -> None:
        if self.interval_seconds <= 0:
            raise ValueError(f"{self.name}: interval_seconds must be > 0")


@dataclass
class JobStats:
    started: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped_in_flight: int = 0
    last_started_at: datetime | None = None
    last_finished_at: datetime | None = None
    last_error: str | None = None


class PollScheduler:
    def __init__(self, jobs: Sequence[PollJob], *, run_id: str | None = None) -> None:
        names = [job.name for job in jobs]
        if len(set(names)) != len(names):
            raise ValueError("poll job names must be unique")
        self.jobs = {job.name: job for job in jobs}
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.token = CancellationToken()
        self.stats = {job.name: JobStats() for job in jobs}
        self._tick_tasks: list[asyncio.Task[None]] = []
        self._in_flight: dict[str, asyncio.Task[bool]] = {}

    @property
    def running(self) -> bool:
        return bool(self._tick_tasks) and self.token.alive

    def start(self) -> None:
        if self._tick_tasks:
            raise RuntimeError("scheduler already started")
        if not self.token.alive:
            raise RuntimeError("scheduler was stopped")
        for job in self.jobs.values():
            self._tick_tasks.append(
                asyncio.create_task(self._tick_loop(job), name=f"poll-tick:{job.name}")
            )
        logger.info(
            "poll_scheduler_started",
            extra={
                "extra": {
                    "run_id": self.run_id,
                    "jobs": {job.name: job.interval_seconds for job in self.jobs.values()},
                }
            },
        )

    async def stop(self) -> None:
        self.token.cancel()
        tasks = [*self._tick_tasks, *self._in_flight.values()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tick_tasks.clear()
        self._in_flight.clear()
        logger.info("poll_scheduler_stopped", extra={"extra": {"run_id": self.run_id}})

    def trigger(self, name: str) -> bool:
        """Launch one cycle of ``name`` unless its previous cycle is still running."""
        job = self.jobs[name]
        current = self._in_flight.get(name)
        if current is not None and not current.done():
            self.stats[name].skipped_in_flight += 1
            logger.info(
                "poll_cycle_skipped_in_flight",
                extra={"extra": {"job": name, "run_id": self.run_id}},
            )
            get_instrumentation().counter("poll_cycle_skipped", attrs={"job": name})
            return False
        task = asyncio.create_task(self._run_cycle(job), name=f"poll-cycle:{name}")
        self._in_flight[name] = task
        task.add_done_callback(lambda done, key=name: self._clear_in_flight(key, done))
        return True

    async def run_once(self, name: str) -> bool:
        """Run one cycle inline; returns False when the cycle raised."""
        return await self._run_cycle(self.jobs[name])

    async def run_all_once(self) -> dict[str, bool]:
        names = list(self.jobs)
        results = await asyncio.gather(*(self.run_once(name) for name in names))
        return dict(zip(names, results, strict=True))

    def _clear_in_flight(self, name: str, task: asyncio.Task[bool]) -> None:
        if self._in_flight.get(name) is task:
            del self._in_flight[name]

    async def _tick_loop(self, job: PollJob) -> None:
        if not job.run_immediately:
            await asyncio.sleep(job.interval_seconds)
        while self.token.alive:
            self.trigger(job.name)
            await asyncio.sleep(job.interval_seconds)

    async def _run_cycle(self, job: PollJob) -> bool:
        stats = self.stats[job.name]
        cycle_id = uuid.uuid4().hex[:12]
        started = monotonic()
        stats.started += 1
        stats.last_started_at = datetime.now(UTC)
        with with_cycle_context(cycle_id, source=job.name, run_id=self.run_id):
            try:
                await job.cycle(self.token)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                stats.failed += 1
                stats.last_error = f"{type(exc).__name__}: {exc}"
                logger.exception(
                    "poll_cycle_failed",
                    extra={"extra": {"job": job.name, "error_type": type(exc).__name__}},
                )
                get_instrumentation().counter("poll_cycle_failed", attrs={"job": job.name})
                return False
            finally:
                stats.last_finished_at = datetime.now(UTC)
                get_instrumentation().histogram(
                    "poll_cycle_ms", (monotonic() - started) * 1000, attrs={"job": job.name}
                )
        stats.succeeded += 1
        return True
