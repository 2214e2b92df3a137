from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

from chaoswatch.adapters.ledger_reader import LedgerReadError
from chaoswatch.domain.abi import ContractCall
from chaoswatch.domain.contracts import ContractAddresses
from chaoswatch.domain.models import ReadFailed, ReadOk, ReadOutcome
from chaoswatch.domain.snapshot import SNAPSHOT_FIELDS, ChainSnapshot, SnapshotField
from chaoswatch.observability import get_instrumentation
from chaoswatch.services.poll_scheduler import CancellationToken

logger = logging.getLogger(__name__)


class BatchReader(Protocol):
    async def read_many(self, calls: Sequence[ContractCall]) -> list[ReadOutcome]: ...


@dataclass(frozen=True)
class FieldResolution:
    value: Any
    stale: bool
    reason: str | None = None


def resolve_field(outcome: ReadOutcome, previous: Any, default: Any) -> FieldResolution:
    """Value to publish for one field given this cycle's read outcome."""
    if isinstance(outcome, ReadOk):
        return FieldResolution(value=outcome.value, stale=False)
    fallback = previous if previous is not None else default
    return FieldResolution(value=fallback, stale=True, reason=outcome.reason)


@dataclass
class MergerStatus:
    last_success_at: datetime | None = None
    last_error: str | None = None
    last_error_at: datetime | None = None
    consecutive_failures: int = 0

    def record_success(self, at: datetime) -> None:
        self.last_success_at = at
        self.last_error = None
        self.consecutive_failures = 0

    def record_failure(self, error: str, at: datetime) -> None:
        self.last_error = error
        self.last_error_at = at
        self.consecutive_failures += 1

    def as_dict(self) -> dict[str, Any]:
        return {
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "last_error": self.last_error,
            "last_error_at": self.last_error_at.isoformat() if self.last_error_at else None,
            "consecutive_failures": self.consecutive_failures,
        }


class SnapshotMerger:
    """Keeps the current chain snapshot, falling back per field on failed reads."""

    def __init__(
        self,
        *,
        reader: BatchReader,
        addresses: ContractAddresses,
        fields: Sequence[SnapshotField] = SNAPSHOT_FIELDS,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self.reader = reader
        self.addresses = addresses
        self.fields = tuple(fields)
        self.now_provider = now_provider or (lambda: datetime.now(UTC))
        self.snapshot: ChainSnapshot | None = None
        self.status = MergerStatus()

    async def poll(self, token: CancellationToken | None = None) -> ChainSnapshot | None:
        token = token or CancellationToken()
        live = [item for item in self.fields if self.addresses.deployed(item.contract)]
        try:
            outcomes = await self.reader.read_many([item.call(self.addresses) for item in live])
        except LedgerReadError as exc:
            if token.alive:
                self.status.record_failure(str(exc), self.now_provider())
                logger.warning(
                    "chain_snapshot_unavailable_keeping_previous",
                    extra={
                        "extra": {
                            "error_type": type(exc).__name__,
                            "error_message": str(exc),
                            "consecutive_failures": self.status.consecutive_failures,
                            "has_previous": self.snapshot is not None,
                        }
                    },
                )
            return self.snapshot
        if not token.alive:
            return self.snapshot

        by_name = {item.name: outcome for item, outcome in zip(live, outcomes, strict=True)}
        self.snapshot = self.merge(by_name)
        self.status.record_success(self.snapshot.fetched_at)
        return self.snapshot

    def merge(self, outcomes: Mapping[str, ReadOutcome]) -> ChainSnapshot:
        """Build the next snapshot from this cycle's outcomes and the previous snapshot.

        Fields absent from ``outcomes`` belong to contracts that are not
        deployed and resolve to their default without counting as stale.
        """
        previous = self.snapshot
        values: dict[str, Any] = {}
        stale: set[str] = set()
        for item in self.fields:
            outcome = outcomes.get(item.name)
            if outcome is None:
                values[item.name] = item.default
                continue
            resolution = resolve_field(
                outcome,
                previous.values.get(item.name) if previous is not None else None,
                item.default,
            )
            values[item.name] = int(resolution.value)
            if resolution.stale:
                stale.add(item.name)
                get_instrumentation().counter("snapshot_field_stale", attrs={"field": item.name})

        if stale:
            reasons = {
                name: outcome.reason
                for name, outcome in outcomes.items()
                if isinstance(outcome, ReadFailed)
            }
            logger.warning(
                "chain_snapshot_fields_stale",
                extra={"extra": {"stale_fields": sorted(stale), "reasons": reasons}},
            )
        return ChainSnapshot(
            values=values, fetched_at=self.now_provider(), stale_fields=frozenset(stale)
        )
