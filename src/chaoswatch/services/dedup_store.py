from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Iterable

logger = logging.getLogger(__name__)


class DeduplicationStore:
    """Insertion-ordered set of admitted event ids with a hard size cap.

    The cap must cover every record still retained downstream; the owner of
    the retained history calls ``forget`` for each record it evicts.
    """

    def __init__(self, max_size: int, *, retention: int = 0) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        if max_size < retention:
            raise ValueError("max_size must be >= retention")
        self.max_size = max_size
        self._ids: OrderedDict[str, None] = OrderedDict()
        self.evicted = 0

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def admit(self, event_id: str) -> bool:
        if event_id in self._ids:
            return False
        self._ids[event_id] = None
        self._enforce_cap()
        return True

    def forget(self, event_ids: Iterable[str]) -> int:
        removed = 0
        for event_id in event_ids:
            if event_id in self._ids:
                del self._ids[event_id]
                removed += 1
        return removed

    def restore(self, event_ids: Iterable[str]) -> int:
        added = 0
        for event_id in event_ids:
            if isinstance(event_id, str) and event_id not in self._ids:
                self._ids[event_id] = None
                added += 1
        self._enforce_cap()
        return added

    def ids(self) -> list[str]:
        return list(self._ids)

    def _enforce_cap(self) -> None:
        overflow = len(self._ids) - self.max_size
        for _ in range(max(0, overflow)):
            self._ids.popitem(last=False)
            self.evicted += 1
        if overflow > 0:
            logger.debug(
                "dedup_store_evicted_oldest",
                extra={"extra": {"evicted": overflow, "size": len(self._ids)}},
            )
