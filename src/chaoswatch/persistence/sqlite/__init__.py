from chaoswatch.persistence.sqlite.collections_repo import SqliteCollectionsRepo, StoredCollection
from chaoswatch.persistence.sqlite.sqlite_connection import (
    create_sqlite_connection,
    ensure_collections_schema,
)

__all__ = [
    "SqliteCollectionsRepo",
    "StoredCollection",
    "create_sqlite_connection",
    "ensure_collections_schema",
]
