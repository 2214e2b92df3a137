from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any


@dataclass(frozen=True)
class ReadOk:
    value: Any

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class ReadFailed:
    reason: str

    @property
    def ok(self) -> bool:
        return False


ReadOutcome = ReadOk | ReadFailed


def event_record_id(tx_hash: str, log_index: int) -> str:
    return f"{tx_hash.lower()}-{log_index}"


@dataclass(frozen=True)
class RawEventRecord:
    id: str
    kind: str
    subject_id: int
    block_number: int
    tx_hash: str
    log_index: int
    payload: Mapping[str, Any] = field(default_factory=dict)
    detail_text: str = ""

    def __post_init__(self) -> None:
        if self.block_number < 0:
            raise ValueError("block_number must be >= 0")
        if self.log_index < 0:
            raise ValueError("log_index must be >= 0")
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))


class ScanPhase(StrEnum):
    UNINITIALIZED = "uninitialized"
    BACKFILLING = "backfilling"
    POLLING = "polling"


@dataclass(frozen=True)
class ScanRange:
    from_block: int
    to_block: int

    @property
    def width(self) -> int:
        return self.to_block - self.from_block + 1


@dataclass
class BlockCursor:
    source_id: str
    last_scanned_block: int = 0
    phase: ScanPhase = ScanPhase.UNINITIALIZED

    def advance(self, scanned_to: int) -> None:
        self.last_scanned_block = max(self.last_scanned_block, scanned_to)
        self.phase = ScanPhase.POLLING


class FeedKind(StrEnum):
    LEDGER_ACTIVITY = "ledger_activity"
    ALLIANCE_EVENT = "alliance_event"
    COMBAT_EVENT = "combat_event"
    NEGOTIATION_EVENT = "negotiation_event"
    COSMIC_EVENT = "cosmic_event"
    SOCIAL_MESSAGE = "social_message"


@dataclass(frozen=True)
class UnifiedFeedItem:
    kind: FeedKind
    sort_key: int
    item_id: str
    payload: Mapping[str, Any]
