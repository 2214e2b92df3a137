from __future__ import annotations

from chaoswatch.services.entity_merger import merge_entities


def test_fresh_values_replace_previous() -> None:
    result = merge_entities([1, 2], {1: "a2", 2: "b2"}, {1: "a1", 2: "b1"})

    assert result.entities == {1: "a2", 2: "b2"}
    assert result.refreshed == (1, 2)
    assert result.stale == ()


def test_failed_refresh_keeps_whole_previous_entity() -> None:
    result = merge_entities([1, 2, 3], {1: "a2", 2: None}, {2: "b1", 3: "c1"})

    assert result.entities == {1: "a2", 2: "b1", 3: "c1"}
    assert result.stale == (2, 3)


def test_unknown_failed_ids_are_left_out() -> None:
    result = merge_entities([4, 5], {4: None, 5: "e"}, {})

    assert list(result.entities) == [5]
    assert result.missing == (4,)


def test_output_follows_id_order_and_drops_unlisted_previous() -> None:
    result = merge_entities([3, 1], {1: "a", 3: "c"}, {9: "old"})

    assert list(result.entities) == [3, 1]
    assert 9 not in result.entities
