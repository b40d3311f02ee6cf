"""Factory for the configured record store."""

from app.adapters.store.base import AbstractRecordStore
from app.adapters.store.in_memory import InMemoryRecordStore
from app.core.config import StorageSettings, settings
from app.core.errors import ValidationAppError


def create_record_store(storage: StorageSettings | None = None) -> AbstractRecordStore:
    """Instantiate the record store selected by ``STORAGE_BACKEND``.

    Args:
        storage: Storage settings; defaults to ``settings.storage``.

    Returns:
        AbstractRecordStore: Configured store instance.

    Raises:
        ValidationAppError: If the backend is unknown.
    """
    cfg = storage or settings.storage
    backend = cfg.backend.lower()

    if backend == "memory":
        return InMemoryRecordStore()

    if backend == "aws":
        import boto3

        from app.adapters.store.dynamodb import DynamoDBRecordStore

        client = boto3.client(
            "dynamodb",
            region_name=cfg.aws_region,
            endpoint_url=cfg.endpoint_url,
        )
        return DynamoDBRecordStore(
            client,
            records_table=cfg.records_table,
            scans_table=cfg.scans_table,
            owner_index=cfg.owner_index,
        )

    raise ValidationAppError(
        code="storage_unknown_backend",
        message=f"Unknown storage backend: '{backend}'. Supported backends: memory, aws",
    )
