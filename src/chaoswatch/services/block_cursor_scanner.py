from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from chaoswatch.domain.activity_events import ActivityEventSpec
from chaoswatch.domain.models import BlockCursor, RawEventRecord, ScanPhase, ScanRange
from chaoswatch.logging_context import with_scan_context
from chaoswatch.services.dedup_store import DeduplicationStore

logger = logging.getLogger(__name__)


class LogSource(Protocol):
    async def scan_logs(
        self,
        spec: ActivityEventSpec,
        address: str,
        from_block: int,
        to_block: int,
    ) -> list[RawEventRecord]: ...


@dataclass(frozen=True)
class ScanBatch:
    scan_range: ScanRange | None
    records: tuple[RawEventRecord, ...] = ()


def plan_scan(cursor: BlockCursor, head: int) -> ScanRange | None:
    """Block range the next scan should cover, or None when there is nothing new."""
    if cursor.phase is ScanPhase.UNINITIALIZED:
        raise ValueError("cursor must be initialized before planning a scan")
    start = cursor.last_scanned_block
    if cursor.phase is ScanPhase.POLLING:
        start += 1
    if start > head:
        return None
    return ScanRange(from_block=start, to_block=head)


class BlockCursorScanner:
    """Incremental log scanner for one event kind on one contract.

    UNINITIALIZED -> BACKFILLING on the first head seen (bounded lookback),
    then POLLING after the first committed batch. The cursor never moves
    backwards and only advances when a fetched batch is committed.
    """

    def __init__(
        self,
        *,
        spec: ActivityEventSpec,
        address: str,
        source: LogSource,
        dedup: DeduplicationStore,
        lookback_blocks: int,
    ) -> None:
        if lookback_blocks < 0:
            raise ValueError("lookback_blocks must be >= 0")
        self.spec = spec
        self.address = address
        self.source = source
        self.dedup = dedup
        self.lookback_blocks = lookback_blocks
        self.cursor = BlockCursor(source_id=f"{spec.kind.value}@{address}")

    def _initialize(self, head: int) -> None:
        self.cursor.last_scanned_block = max(1, head - self.lookback_blocks)
        self.cursor.phase = ScanPhase.BACKFILLING
        logger.info(
            "scan_cursor_backfill_started",
            extra={
                "extra": {
                    "source_id": self.cursor.source_id,
                    "from_block": self.cursor.last_scanned_block,
                    "head": head,
                }
            },
        )

    async def fetch(self, head: int) -> ScanBatch:
        """Read the logs for the next range without admitting anything.

        Raises whatever the log source raises. Nothing is marked seen and the
        cursor does not move until the batch is passed to ``commit``.
        """
        with with_scan_context(self.spec.kind.value):
            if self.cursor.phase is ScanPhase.UNINITIALIZED:
                self._initialize(head)

            scan_range = plan_scan(self.cursor, head)
            if scan_range is None:
                if head < self.cursor.last_scanned_block:
                    logger.warning(
                        "scan_head_regressed",
                        extra={
                            "extra": {
                                "source_id": self.cursor.source_id,
                                "head": head,
                                "cursor": self.cursor.last_scanned_block,
                            }
                        },
                    )
                return ScanBatch(scan_range=None)

            records = await self.source.scan_logs(
                self.spec, self.address, scan_range.from_block, scan_range.to_block
            )
            return ScanBatch(scan_range=scan_range, records=tuple(records))

    def commit(self, batch: ScanBatch) -> list[RawEventRecord]:
        """Admit the batch through the dedup store and advance the cursor.

        Synchronous; the caller must retain every returned record before it
        next awaits.
        """
        if batch.scan_range is None:
            return []
        admitted = [record for record in batch.records if self.dedup.admit(record.id)]
        self.cursor.advance(batch.scan_range.to_block)
        logger.debug(
            "scan_range_committed",
            extra={
                "extra": {
                    "source_id": self.cursor.source_id,
                    "event_kind": self.spec.kind.value,
                    "blocks": batch.scan_range.width,
                    "fetched": len(batch.records),
                    "admitted": len(admitted),
                }
            },
        )
        return admitted
