from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from chaoswatch.domain.activity_events import activity_label
from chaoswatch.domain.agents import CosmicEvent
from chaoswatch.domain.models import FeedKind, RawEventRecord, UnifiedFeedItem
from chaoswatch.domain.offchain import (
    AllianceEvent,
    NegotiationEvent,
    SabotageEvent,
    SocialMessage,
)
from chaoswatch.services.activity_service import record_to_dict

DEFAULT_MAX_ITEMS = 60
DEFAULT_AVG_BLOCK_SECONDS = 0.4
RECENT_BLOCK_WINDOW = 300

CATEGORY_KINDS: dict[str, frozenset[FeedKind]] = {
    "chain": frozenset({FeedKind.LEDGER_ACTIVITY, FeedKind.COSMIC_EVENT}),
    "social": frozenset({FeedKind.SOCIAL_MESSAGE, FeedKind.ALLIANCE_EVENT}),
    "conflict": frozenset(
        {FeedKind.COMBAT_EVENT, FeedKind.NEGOTIATION_EVENT, FeedKind.ALLIANCE_EVENT}
    ),
    "cosmic": frozenset({FeedKind.COSMIC_EVENT}),
    "alliance": frozenset({FeedKind.ALLIANCE_EVENT, FeedKind.SOCIAL_MESSAGE}),
}
ALLIANCE_MESSAGE_TYPES = frozenset({"alliance_propose", "betrayal_announce"})

FeedPredicate = Callable[[FeedKind, Mapping[str, Any]], bool]


@dataclass(frozen=True)
class FeedEntry:
    """A source record before projection; exactly one time basis is set."""

    item_id: str
    payload: Mapping[str, Any]
    timestamp_ms: int | None = None
    block_number: int | None = None

    def __post_init__(self) -> None:
        if (self.timestamp_ms is None) == (self.block_number is None):
            raise ValueError("exactly one of timestamp_ms or block_number must be set")


@dataclass(frozen=True)
class FeedSource:
    kind: FeedKind
    entries: Sequence[FeedEntry] = field(default_factory=tuple)


@dataclass(frozen=True)
class FeedFilter:
    kinds: frozenset[FeedKind] | None = None
    category: str | None = None
    message_type: str | None = None
    zone: int | None = None
    predicate: FeedPredicate | None = None

    def __post_init__(self) -> None:
        if self.category is not None and self.category not in CATEGORY_KINDS:
            raise ValueError(f"unknown feed category: {self.category}")

    def admits_kind(self, kind: FeedKind) -> bool:
        if self.kinds is not None and kind not in self.kinds:
            return False
        if self.category is not None and kind not in CATEGORY_KINDS[self.category]:
            return False
        return True

    def admits(self, kind: FeedKind, payload: Mapping[str, Any]) -> bool:
        if not self.admits_kind(kind):
            return False
        if (
            self.category == "alliance"
            and kind is FeedKind.SOCIAL_MESSAGE
            and payload.get("type") not in ALLIANCE_MESSAGE_TYPES
        ):
            return False
        if self.message_type is not None and kind is FeedKind.SOCIAL_MESSAGE:
            if payload.get("type") != self.message_type:
                return False
        if self.zone is not None and payload.get("zone") != self.zone:
            return False
        if self.predicate is not None and not self.predicate(kind, payload):
            return False
        return True


def estimate_block_time_ms(
    block_number: int, *, now_ms: int, current_head: int, avg_block_seconds: float
) -> int:
    """Approximate wall-clock time of a block; an estimate, not chain time."""
    if current_head <= 0:
        return now_ms
    distance = max(0, current_head - block_number)
    return now_ms - round(distance * avg_block_seconds * 1000)


def merge(
    sources: Iterable[FeedSource],
    feed_filter: FeedFilter | None = None,
    *,
    now_ms: int,
    current_head: int,
    avg_block_seconds: float = DEFAULT_AVG_BLOCK_SECONDS,
    max_items: int = DEFAULT_MAX_ITEMS,
) -> list[UnifiedFeedItem]:
    """Project, filter, order newest first and cap the given sources.

    Pure: the result depends only on the arguments. Ties keep source order,
    then the order of entries within a source.
    """
    if max_items < 0:
        raise ValueError("max_items must be >= 0")
    items: list[UnifiedFeedItem] = []
    for source in sources:
        if feed_filter is not None and not feed_filter.admits_kind(source.kind):
            continue
        for entry in source.entries:
            if feed_filter is not None and not feed_filter.admits(source.kind, entry.payload):
                continue
            if entry.timestamp_ms is not None:
                sort_key = entry.timestamp_ms
            else:
                sort_key = estimate_block_time_ms(
                    entry.block_number or 0,
                    now_ms=now_ms,
                    current_head=current_head,
                    avg_block_seconds=avg_block_seconds,
                )
            items.append(
                UnifiedFeedItem(
                    kind=source.kind,
                    sort_key=sort_key,
                    item_id=entry.item_id,
                    payload=entry.payload,
                )
            )
    items.sort(key=lambda item: item.sort_key, reverse=True)
    return items[:max_items]


def activity_source(records: Iterable[RawEventRecord]) -> FeedSource:
    entries = []
    for record in records:
        payload = record_to_dict(record)
        payload["label"] = activity_label(record.kind)
        entries.append(
            FeedEntry(item_id=record.id, payload=payload, block_number=record.block_number)
        )
    return FeedSource(FeedKind.LEDGER_ACTIVITY, tuple(entries))


def cosmic_source(events: Iterable[CosmicEvent], current_head: int) -> FeedSource:
    entries = []
    for event in events:
        payload = event.to_dict()
        payload["is_recent"] = (
            current_head > 0 and current_head - event.trigger_block < RECENT_BLOCK_WINDOW
        )
        entries.append(
            FeedEntry(
                item_id=f"cosmic-{event.event_id}",
                payload=payload,
                block_number=event.trigger_block,
            )
        )
    return FeedSource(FeedKind.COSMIC_EVENT, tuple(entries))


def social_source(messages: Iterable[SocialMessage]) -> FeedSource:
    return FeedSource(
        FeedKind.SOCIAL_MESSAGE,
        tuple(
            FeedEntry(item_id=msg.id, payload=msg.to_payload(), timestamp_ms=msg.timestamp)
            for msg in messages
        ),
    )


def alliance_source(events: Iterable[AllianceEvent]) -> FeedSource:
    return FeedSource(
        FeedKind.ALLIANCE_EVENT,
        tuple(
            FeedEntry(item_id=evt.item_id, payload=evt.to_payload(), timestamp_ms=evt.timestamp)
            for evt in events
        ),
    )


def combat_source(events: Iterable[SabotageEvent]) -> FeedSource:
    return FeedSource(
        FeedKind.COMBAT_EVENT,
        tuple(
            FeedEntry(item_id=evt.id, payload=evt.to_payload(), timestamp_ms=evt.timestamp)
            for evt in events
        ),
    )


def negotiation_source(events: Iterable[NegotiationEvent]) -> FeedSource:
    return FeedSource(
        FeedKind.NEGOTIATION_EVENT,
        tuple(
            FeedEntry(item_id=evt.id, payload=evt.to_payload(), timestamp_ms=evt.timestamp)
            for evt in events
        ),
    )
