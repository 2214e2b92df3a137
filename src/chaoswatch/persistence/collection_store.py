from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from chaoswatch.persistence.sqlite import (
    SqliteCollectionsRepo,
    create_sqlite_connection,
    ensure_collections_schema,
)

logger = logging.getLogger(__name__)

MAX_SAFE_INTEGER = 2**53 - 1
BIGINT_TAG = "$bigint"


def encode_bigints(value: Any) -> Any:
    """Replace integers a JSON consumer could not hold exactly with a tagged string."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if abs(value) > MAX_SAFE_INTEGER:
            return {BIGINT_TAG: str(value)}
        return value
    if isinstance(value, dict):
        return {str(key): encode_bigints(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [encode_bigints(item) for item in value]
    return value


def decode_bigints(value: Any) -> Any:
    if isinstance(value, dict):
        if set(value) == {BIGINT_TAG} and isinstance(value[BIGINT_TAG], str):
            try:
                return int(value[BIGINT_TAG])
            except ValueError:
                return value
        return {key: decode_bigints(item) for key, item in value.items()}
    if isinstance(value, list):
        return [decode_bigints(item) for item in value]
    return value


class CollectionStore:
    """Named, bounded JSON lists in one SQLite table.

    Persistence is best effort: ``save`` reports failure with ``False`` and
    ``load`` falls back to an empty list, both with a warning log.
    """

    def __init__(
        self, db_path: str, *, now_provider: Callable[[], datetime] | None = None
    ) -> None:
        self.db_path = db_path
        self.now_provider = now_provider or (lambda: datetime.now(UTC))

    @contextmanager
    def _repo(self) -> Iterator[SqliteCollectionsRepo]:
        conn = create_sqlite_connection(self.db_path)
        try:
            ensure_collections_schema(conn)
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield SqliteCollectionsRepo(conn)
            except BaseException:
                conn.rollback()
                raise
            conn.commit()
        finally:
            conn.close()

    def save(self, name: str, items: Sequence[Any], *, max_items: int | None = None) -> bool:
        bounded = list(items) if max_items is None else list(items)[: max(0, max_items)]
        try:
            payload = json.dumps(encode_bigints(bounded), separators=(",", ":"))
        except (TypeError, ValueError) as exc:
            logger.warning(
                "collection_save_unserializable",
                extra={"extra": {"collection": name, "error_message": str(exc)}},
            )
            return False
        try:
            with self._repo() as repo:
                repo.upsert(
                    name=name,
                    payload=payload,
                    item_count=len(bounded),
                    updated_at=self.now_provider().isoformat(),
                )
        except sqlite3.Error as exc:
            logger.warning(
                "collection_save_failed",
                extra={
                    "extra": {
                        "collection": name,
                        "error_type": type(exc).__name__,
                        "error_message": str(exc),
                    }
                },
            )
            return False
        return True

    def load(self, name: str) -> list[Any]:
        try:
            with self._repo() as repo:
                stored = repo.get(name)
        except sqlite3.Error as exc:
            logger.warning(
                "collection_load_failed",
                extra={
                    "extra": {
                        "collection": name,
                        "error_type": type(exc).__name__,
                        "error_message": str(exc),
                    }
                },
            )
            return []
        if stored is None:
            return []
        try:
            data = json.loads(stored.payload)
        except json.JSONDecodeError as exc:
            logger.warning(
                "collection_payload_corrupt",
                extra={"extra": {"collection": name, "error_message": str(exc)}},
            )
            return []
        if not isinstance(data, list):
            logger.warning(
                "collection_payload_wrong_shape",
                extra={"extra": {"collection": name, "payload_type": type(data).__name__}},
            )
            return []
        return decode_bigints(data)

    def names(self) -> list[str]:
        try:
            with self._repo() as repo:
                return sorted(repo.list_names())
        except sqlite3.Error:
            logger.warning("collection_names_unavailable", exc_info=True)
            return []
