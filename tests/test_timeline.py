from __future__ import annotations

import pytest

from chaoswatch.domain.agents import CosmicEvent
from chaoswatch.domain.models import FeedKind, RawEventRecord
from chaoswatch.domain.offchain import AllianceEvent, SocialMessage
from chaoswatch.services.timeline import (
    FeedEntry,
    FeedFilter,
    FeedSource,
    activity_source,
    alliance_source,
    cosmic_source,
    estimate_block_time_ms,
    merge,
    social_source,
)

NOW_MS = 1_700_000_000_000


def _social(message_id: str, timestamp: int, *, type_: str = "taunt", zone: int = 0):
    return SocialMessage(
        id=message_id, agent_id=1, type=type_, text="hi", zone=zone, timestamp=timestamp
    )


def test_entry_requires_exactly_one_time_basis() -> None:
    with pytest.raises(ValueError):
        FeedEntry(item_id="x", payload={})
    with pytest.raises(ValueError):
        FeedEntry(item_id="x", payload={}, timestamp_ms=1, block_number=1)


@pytest.mark.parametrize(
    ("block", "head", "expected"),
    [
        (100, 100, NOW_MS),
        (90, 100, NOW_MS - 4000),
        (110, 100, NOW_MS),
        (5, 0, NOW_MS),
    ],
)
def test_block_time_estimate(block: int, head: int, expected: int) -> None:
    estimated = estimate_block_time_ms(
        block, now_ms=NOW_MS, current_head=head, avg_block_seconds=0.4
    )

    assert estimated == expected


def test_merge_interleaves_timestamp_and_block_sources_newest_first() -> None:
    chain = FeedSource(
        FeedKind.LEDGER_ACTIVITY,
        (
            FeedEntry("tx-a", {"n": 1}, block_number=100),
            FeedEntry("tx-b", {"n": 2}, block_number=80),
        ),
    )
    social = social_source([_social("m1", NOW_MS - 5000), _social("m2", NOW_MS - 1000)])

    items = merge([chain, social], now_ms=NOW_MS, current_head=100)

    assert [item.item_id for item in items] == ["tx-a", "m2", "m1", "tx-b"]
    assert items[0].sort_key == NOW_MS
    assert items[3].sort_key == NOW_MS - 8000


def test_merge_caps_and_rejects_negative_cap() -> None:
    social = social_source([_social(f"m{i}", NOW_MS - i) for i in range(10)])

    items = merge([social], now_ms=NOW_MS, current_head=0, max_items=3)

    assert [item.item_id for item in items] == ["m0", "m1", "m2"]
    assert merge([social], now_ms=NOW_MS, current_head=0, max_items=0) == []
    with pytest.raises(ValueError):
        merge([social], now_ms=NOW_MS, current_head=0, max_items=-1)


def test_ties_keep_source_then_entry_order() -> None:
    first = FeedSource(
        FeedKind.COMBAT_EVENT,
        (FeedEntry("c1", {}, timestamp_ms=50), FeedEntry("c2", {}, timestamp_ms=50)),
    )
    second = FeedSource(FeedKind.NEGOTIATION_EVENT, (FeedEntry("n1", {}, timestamp_ms=50),))

    items = merge([first, second], now_ms=NOW_MS, current_head=0)

    assert [item.item_id for item in items] == ["c1", "c2", "n1"]


def test_merge_is_pure() -> None:
    sources = [social_source([_social("m1", 10), _social("m2", 20)])]

    first = merge(sources, now_ms=NOW_MS, current_head=0)
    second = merge(sources, now_ms=NOW_MS, current_head=0)

    assert first == second
    assert [entry.item_id for entry in sources[0].entries] == ["m1", "m2"]


def test_kind_filter_skips_excluded_sources() -> None:
    social = social_source([_social("m1", 10)])
    combat = FeedSource(FeedKind.COMBAT_EVENT, (FeedEntry("c1", {}, timestamp_ms=20),))

    items = merge(
        [social, combat],
        FeedFilter(kinds=frozenset({FeedKind.COMBAT_EVENT})),
        now_ms=NOW_MS,
        current_head=0,
    )

    assert [item.item_id for item in items] == ["c1"]


def test_alliance_category_keeps_only_alliance_messages() -> None:
    messages = social_source(
        [
            _social("m1", 10, type_="taunt"),
            _social("m2", 20, type_="alliance_propose"),
            _social("m3", 30, type_="betrayal_announce"),
        ]
    )
    alliances = alliance_source(
        [AllianceEvent(type="formed", alliance_id="a1", agent_ids=[1, 2], timestamp=15)]
    )
    combat = FeedSource(FeedKind.COMBAT_EVENT, (FeedEntry("c1", {}, timestamp_ms=40),))

    items = merge(
        [messages, alliances, combat],
        FeedFilter(category="alliance"),
        now_ms=NOW_MS,
        current_head=0,
    )

    assert [item.item_id for item in items] == ["m3", "m2", "a1-formed-15"]


def test_message_type_and_zone_filters() -> None:
    messages = social_source(
        [
            _social("m1", 10, type_="taunt", zone=1),
            _social("m2", 20, type_="taunt", zone=2),
            _social("m3", 30, type_="boast", zone=2),
        ]
    )

    by_type = merge(
        [messages], FeedFilter(message_type="taunt"), now_ms=NOW_MS, current_head=0
    )
    by_zone = merge([messages], FeedFilter(zone=2), now_ms=NOW_MS, current_head=0)

    assert [item.item_id for item in by_type] == ["m2", "m1"]
    assert [item.item_id for item in by_zone] == ["m3", "m2"]


def test_predicate_filter() -> None:
    messages = social_source([_social("m1", 10), _social("m2", 20)])

    items = merge(
        [messages],
        FeedFilter(predicate=lambda kind, payload: payload["id"] != "m2"),
        now_ms=NOW_MS,
        current_head=0,
    )

    assert [item.item_id for item in items] == ["m1"]


def test_unknown_category_rejected() -> None:
    with pytest.raises(ValueError):
        FeedFilter(category="weather")


def test_activity_source_adds_label() -> None:
    record = RawEventRecord(
        id="0xaa-1",
        kind="rig_purchase",
        subject_id=4,
        block_number=99,
        tx_hash="0xaa",
        log_index=1,
        detail_text="Purchased Potato Rig (1 CHAOS)",
    )

    (entry,) = activity_source([record]).entries

    assert entry.block_number == 99
    assert entry.payload["label"] == "Rig Buy"
    assert entry.payload["detail_text"] == "Purchased Potato Rig (1 CHAOS)"


def test_cosmic_source_marks_recent_events() -> None:
    def event(event_id: int, block: int) -> CosmicEvent:
        return CosmicEvent(
            event_id=event_id,
            event_type=0,
            severity_tier=1,
            base_damage=5,
            origin_zone=1,
            affected_zones_mask=2,
            trigger_block=block,
            triggered_by="0x" + "aa" * 20,
            processed=True,
        )

    source = cosmic_source([event(2, 950), event(1, 600)], current_head=1000)

    recent, old = source.entries
    assert recent.item_id == "cosmic-2"
    assert recent.payload["is_recent"] is True
    assert old.payload["is_recent"] is False
    assert recent.payload["name"] == "Solar Breeze"
