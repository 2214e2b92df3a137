from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Protocol

from chaoswatch.adapters.ledger_reader import LedgerReadError
from chaoswatch.domain.activity_events import ACTIVITY_EVENTS, ActivityEventSpec
from chaoswatch.domain.contracts import ContractAddresses
from chaoswatch.domain.models import BlockCursor, RawEventRecord
from chaoswatch.observability import get_instrumentation
from chaoswatch.services.block_cursor_scanner import BlockCursorScanner, LogSource, ScanBatch
from chaoswatch.services.dedup_store import DeduplicationStore
from chaoswatch.services.poll_scheduler import CancellationToken

logger = logging.getLogger(__name__)


class HeadSource(LogSource, Protocol):
    async def block_number(self) -> int: ...


def record_to_dict(record: RawEventRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "kind": record.kind,
        "subject_id": record.subject_id,
        "block_number": record.block_number,
        "tx_hash": record.tx_hash,
        "log_index": record.log_index,
        "payload": dict(record.payload),
        "detail_text": record.detail_text,
    }


def record_from_dict(data: Mapping[str, Any]) -> RawEventRecord:
    return RawEventRecord(
        id=str(data["id"]),
        kind=str(data["kind"]),
        subject_id=int(data["subject_id"]),
        block_number=int(data["block_number"]),
        tx_hash=str(data["tx_hash"]),
        log_index=int(data["log_index"]),
        payload=dict(data.get("payload") or {}),
        detail_text=str(data.get("detail_text") or ""),
    )


def _newest_first(record: RawEventRecord) -> tuple[int, int]:
    return (record.block_number, record.log_index)


class ActivityFeedService:
    """Ledger activity history built from incremental per-event-kind log scans."""

    def __init__(
        self,
        *,
        source: HeadSource,
        addresses: ContractAddresses,
        dedup: DeduplicationStore,
        lookback_blocks: int,
        max_items: int,
        specs: Sequence[ActivityEventSpec] = ACTIVITY_EVENTS,
    ) -> None:
        if max_items < 1:
            raise ValueError("max_items must be >= 1")
        if dedup.max_size < max_items:
            raise ValueError("dedup store must be able to hold every retained record")
        self.source = source
        self.dedup = dedup
        self.max_items = max_items
        self.head = 0
        self.last_error: str | None = None
        self._history: list[RawEventRecord] = []
        self.persisted_cursors: dict[str, int] = {}
        self.scanners = [
            BlockCursorScanner(
                spec=spec,
                address=addresses.address_of(spec.contract),
                source=source,
                dedup=dedup,
                lookback_blocks=lookback_blocks,
            )
            for spec in specs
            if addresses.deployed(spec.contract)
        ]

    @property
    def history(self) -> list[RawEventRecord]:
        return list(self._history)

    def cursors(self) -> list[BlockCursor]:
        return [scanner.cursor for scanner in self.scanners]

    async def poll(self, token: CancellationToken | None = None) -> list[RawEventRecord]:
        """One scan cycle; returns the records admitted this cycle.

        Fetches run concurrently. Admission, cursor advance and the history
        merge run together afterwards with no await in between.
        """
        token = token or CancellationToken()
        try:
            head = await self.source.block_number()
        except LedgerReadError as exc:
            self.last_error = str(exc)
            logger.warning(
                "activity_head_unavailable",
                extra={"extra": {"error_type": type(exc).__name__, "error_message": str(exc)}},
            )
            return []
        if not token.alive:
            return []

        results = await asyncio.gather(
            *(scanner.fetch(head) for scanner in self.scanners), return_exceptions=True
        )
        if not token.alive:
            return []

        batches: list[tuple[BlockCursorScanner, ScanBatch]] = []
        failures = 0
        for scanner, result in zip(self.scanners, results, strict=True):
            if isinstance(result, LedgerReadError):
                failures += 1
                logger.warning(
                    "activity_scan_failed_will_retry",
                    extra={
                        "extra": {
                            "event_kind": scanner.spec.kind.value,
                            "cursor": scanner.cursor.last_scanned_block,
                            "phase": scanner.cursor.phase.value,
                            "error_message": str(result),
                        }
                    },
                )
                get_instrumentation().counter(
                    "activity_scan_failed", attrs={"kind": scanner.spec.kind.value}
                )
                continue
            if isinstance(result, BaseException):
                raise result
            batches.append((scanner, result))

        admitted: list[RawEventRecord] = []
        for scanner, batch in batches:
            admitted.extend(scanner.commit(batch))
        if admitted:
            self._merge(admitted)

        self.head = max(self.head, head)
        self.last_error = f"{failures} event scans failed" if failures else None
        if admitted:
            logger.info(
                "activity_records_admitted",
                extra={"extra": {"admitted": len(admitted), "head": head}},
            )
        return admitted

    def _merge(self, records: Iterable[RawEventRecord]) -> None:
        combined = sorted([*records, *self._history], key=_newest_first, reverse=True)
        kept, evicted = combined[: self.max_items], combined[self.max_items :]
        self._history = kept
        if evicted:
            self.dedup.forget(record.id for record in evicted)

    def restore(
        self,
        records: Iterable[RawEventRecord],
        cursors: Iterable[Mapping[str, Any]] = (),
    ) -> int:
        """Load persisted history; the scanners still start with a lookback rescan."""
        known = {record.id for record in self._history}
        restored: dict[str, RawEventRecord] = {}
        for record in records:
            if record.id not in known:
                restored.setdefault(record.id, record)
        self.dedup.restore(restored)
        self._merge(restored.values())
        for data in cursors:
            source_id = data.get("source_id")
            block = data.get("last_scanned_block")
            if isinstance(source_id, str) and isinstance(block, int):
                self.persisted_cursors[source_id] = block
        if self._history or self.persisted_cursors:
            logger.info(
                "activity_history_restored",
                extra={
                    "extra": {
                        "records": len(self._history),
                        "persisted_cursors": len(self.persisted_cursors),
                    }
                },
            )
        return len(self._history)
