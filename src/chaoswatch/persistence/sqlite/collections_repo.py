from __future__ import annotations

import sqlite3
from dataclasses import dataclass


@dataclass(frozen=True)
class StoredCollection:
    name: str
    payload: str
    item_count: int
    updated_at: str


class SqliteCollectionsRepo:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def upsert(self, *, name: str, payload: str, item_count: int, updated_at: str) -> None:
        self._conn.execute(
            """
            INSERT INTO collections(name, payload, item_count, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(name) DO UPDATE SET
                payload=excluded.payload,
                item_count=excluded.item_count,
                updated_at=excluded.updated_at
            """,
            (name, payload, item_count, updated_at),
        )

    def get(self, name: str) -> StoredCollection | None:
        row = self._conn.execute(
            "SELECT name, payload, item_count, updated_at FROM collections WHERE name = ?",
            (name,),
        ).fetchone()
        if row is None:
            return None
        return StoredCollection(
            name=str(row["name"]),
            payload=str(row["payload"]),
            item_count=int(row["item_count"]),
            updated_at=str(row["updated_at"]),
        )

    def list_names(self) -> list[str]:
        return [str(row["name"]) for row in self._conn.execute("SELECT name FROM collections")]
