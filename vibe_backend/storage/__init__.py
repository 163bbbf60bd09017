from vibe_backend.storage.record_store import (
    IRecordStore,
    InMemoryRecordStore,
    Row,
    utcnow,
)
from vibe_backend.storage.postgres import PostgresRecordStore

__all__ = [
    "IRecordStore",
    "InMemoryRecordStore",
    "PostgresRecordStore",
    "Row",
    "utcnow",
]
