from __future__ import annotations

from collections.abc import Hashable, Mapping, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

K = TypeVar("K", bound=Hashable)
E = TypeVar("E")


@dataclass(frozen=True)
class EntityMergeResult(Generic[K, E]):
    entities: dict[K, E]
    refreshed: tuple[K, ...]
    stale: tuple[K, ...]
    missing: tuple[K, ...]


def merge_entities(
    ids: Sequence[K],
    fresh: Mapping[K, E | None],
    previous: Mapping[K, E],
) -> EntityMergeResult[K, E]:
    """Whole-entity fallback: an id whose refresh failed keeps its previous value.

    ``fresh[id]`` is None (or absent) when any read for that entity failed.
    Ids that failed and were never seen before are left out. Output follows
    the order of ``ids``.
    """
    entities: dict[K, E] = {}
    refreshed: list[K] = []
    stale: list[K] = []
    missing: list[K] = []
    for key in ids:
        value = fresh.get(key)
        if value is not None:
            entities[key] = value
            refreshed.append(key)
        elif key in previous:
            entities[key] = previous[key]
            stale.append(key)
        else:
            missing.append(key)
    return EntityMergeResult(
        entities=entities,
        refreshed=tuple(refreshed),
        stale=tuple(stale),
        missing=tuple(missing),
    )
