from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import asdict, dataclass, fields, replace


@dataclass(frozen=True)
class LogContext:
    """Correlation fields stamped on every JSON log line."""

    run_id: str | None = None
    cycle_id: str | None = None
    source: str | None = None
    event_kind: str | None = None


LOG_CONTEXT_FIELDS = tuple(field.name for field in fields(LogContext))
_CURRENT: ContextVar[LogContext] = ContextVar("chaoswatch_log_context", default=LogContext())


def get_logging_context() -> dict[str, str]:
    return {key: value for key, value in asdict(_CURRENT.get()).items() if value is not None}


@contextmanager
def with_logging_context(**values: str | None) -> Iterator[LogContext]:
    updates = {
        key: value for key, value in values.items() if key in LOG_CONTEXT_FIELDS and value
    }
    context = replace(_CURRENT.get(), **updates)
    token = _CURRENT.set(context)
    try:
        yield context
    finally:
        _CURRENT.reset(token)


@contextmanager
def with_cycle_context(
    cycle_id: str, *, source: str | None = None, run_id: str | None = None
) -> Iterator[LogContext]:
    with with_logging_context(cycle_id=cycle_id, source=source, run_id=run_id) as context:
        yield context


@contextmanager
def with_scan_context(event_kind: str) -> Iterator[LogContext]:
    with with_logging_context(event_kind=event_kind) as context:
        yield context
