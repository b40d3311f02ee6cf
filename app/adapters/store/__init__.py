"""Record store adapters: in-memory (development/tests) and DynamoDB."""

from app.adapters.store.base import AbstractRecordStore
from app.adapters.store.factory import create_record_store
from app.adapters.store.in_memory import InMemoryRecordStore

__all__ = [
    "AbstractRecordStore",
    "InMemoryRecordStore",
    "create_record_store",
]
