"""DynamoDB record store.

Table layout:

``records_table`` (partition key ``id``)
    Record items, plus one *dedup guard* item per owned record with
    ``id = "dedup#<sha256(owner, destination)>"`` and ``record_id``. Guards
    carry no ``owner_id`` so they stay out of the owner index. Record and
    guard are written in one transaction with ``attribute_not_exists``
    conditions, which makes the dedup key a uniqueness constraint, and the
    guard is read with ``ConsistentRead`` so the dedup lookup is strongly
    consistent.

``records_table`` GSI ``owner_index`` (``owner_id``, ``created_at``)
    Owner listings.

``scans_table`` (partition ``record_id``, sort ``scan_key``)
    ``scan_key = "<scan_at iso>#<event_id>"`` keeps events in time order
    without collisions.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import BotoCoreError, ClientError

from app.adapters.store.base import AbstractRecordStore, check_increment_fields
from app.core.errors import ConflictAppError, NotFoundAppError, UpstreamAppError
from app.schemas.records import Record, ScanEvent

logger = logging.getLogger(__name__)

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()

DEDUP_PREFIX = "dedup#"


def dedup_guard_id(owner_id: str, destination: str) -> str:
    digest = hashlib.sha256(f"{owner_id}\x00{destination}".encode()).hexdigest()
    return f"{DEDUP_PREFIX}{digest}"


def _serialize(item: dict[str, Any]) -> dict[str, Any]:
    return {k: _serializer.serialize(v) for k, v in item.items() if v is not None}


def _deserialize(item: dict[str, Any]) -> dict[str, Any]:
    return {k: _deserializer.deserialize(v) for k, v in item.items()}


def _record_to_item(record: Record) -> dict[str, Any]:
    return _serialize(
        {
            "id": record.id,
            "destination": record.destination,
            "image_key": record.image_key,
            "owner_id": record.owner_id,
            "label": record.label,
            "created_at": record.created_at.isoformat(),
            "last_scan_at": record.last_scan_at.isoformat() if record.last_scan_at else None,
            "scan_count": record.scan_count,
        }
    )


def _item_to_record(item: dict[str, Any]) -> Record:
    data = _deserialize(item)
    return Record(
        id=data["id"],
        destination=data["destination"],
        image_key=data.get("image_key", ""),
        owner_id=data.get("owner_id"),
        label=data.get("label"),
        created_at=datetime.fromisoformat(data["created_at"]),
        last_scan_at=(
            datetime.fromisoformat(data["last_scan_at"]) if data.get("last_scan_at") else None
        ),
        scan_count=int(data.get("scan_count", Decimal(0))),
    )


def _event_to_item(event: ScanEvent) -> dict[str, Any]:
    scan_at = event.scan_at.isoformat()
    return _serialize(
        {
            "record_id": event.record_id,
            "scan_key": f"{scan_at}#{event.event_id}",
            "event_id": event.event_id,
            "scan_at": scan_at,
            "user_agent": event.user_agent,
            "referer": event.referer,
            "source_address": event.source_address,
            "region": event.region,
        }
    )


def _item_to_event(item: dict[str, Any]) -> ScanEvent:
    data = _deserialize(item)
    return ScanEvent(
        event_id=data["event_id"],
        record_id=data["record_id"],
        scan_at=datetime.fromisoformat(data["scan_at"]),
        user_agent=data.get("user_agent", ""),
        referer=data.get("referer", ""),
        source_address=data.get("source_address", ""),
        region=data.get("region", ""),
    )


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def _not_found(record_id: str) -> NotFoundAppError:
    return NotFoundAppError(
        code="record_not_found",
        message="QR code not found.",
        details={"record_id": record_id},
    )


class DynamoDBRecordStore(AbstractRecordStore):
    """Record store backed by two DynamoDB tables.

    boto3 is synchronous; every call runs in a worker thread.
    """

    def __init__(
        self,
        client: Any,
        *,
        records_table: str,
        scans_table: str,
        owner_index: str,
    ) -> None:
        """Initialize the store.

        Args:
            client: boto3 DynamoDB client (``boto3.client("dynamodb")``).
            records_table: Name of the records table.
            scans_table: Name of the scan events table.
            owner_index: Name of the owner GSI on the records table.
        """
        self._client = client
        self._records_table = records_table
        self._scans_table = scans_table
        self._owner_index = owner_index

    async def _call(self, operation: str, **kwargs: Any) -> dict[str, Any]:
        """Run one client operation off the event loop.

        ``ClientError`` is re-raised for the caller to interpret condition
        failures; transport errors become ``UpstreamAppError``.
        """
        try:
            return await asyncio.to_thread(getattr(self._client, operation), **kwargs)
        except BotoCoreError as exc:
            logger.error(
                "record_store.unavailable",
                extra={"operation": operation, "error_type": type(exc).__name__},
            )
            raise UpstreamAppError(
                code="record_store_unavailable",
                message="Record storage is temporarily unavailable.",
            ) from exc

    def _upstream(self, operation: str, exc: ClientError) -> UpstreamAppError:
        logger.error(
            "record_store.error",
            extra={"operation": operation, "error_code": _error_code(exc)},
        )
        return UpstreamAppError(
            code="record_store_unavailable",
            message="Record storage is temporarily unavailable.",
        )

    async def get(self, record_id: str) -> Record | None:
        if record_id.startswith(DEDUP_PREFIX):
            return None
        try:
            response = await self._call(
                "get_item",
                TableName=self._records_table,
                Key=_serialize({"id": record_id}),
                ConsistentRead=True,
            )
        except ClientError as exc:
            raise self._upstream("get_item", exc) from exc

        item = response.get("Item")
        return _item_to_record(item) if item else None

    async def create(self, record: Record) -> Record:
        record_put = {
            "TableName": self._records_table,
            "Item": _record_to_item(record),
            "ConditionExpression": "attribute_not_exists(#id)",
            "ExpressionAttributeNames": {"#id": "id"},
        }

        if not record.owner_id:
            try:
                await self._call("put_item", **record_put)
            except ClientError as exc:
                if _error_code(exc) == "ConditionalCheckFailedException":
                    raise ConflictAppError(
                        code="record_conflict",
                        message="A record with this id already exists.",
                        conflict_on="id",
                    ) from exc
                raise self._upstream("put_item", exc) from exc
            return record

        guard_put = {
            "TableName": self._records_table,
            "Item": _serialize(
                {
                    "id": dedup_guard_id(record.owner_id, record.destination),
                    "record_id": record.id,
                    "item_type": "dedup",
                }
            ),
            "ConditionExpression": "attribute_not_exists(#id)",
            "ExpressionAttributeNames": {"#id": "id"},
        }

        try:
            await self._call(
                "transact_write_items",
                TransactItems=[{"Put": record_put}, {"Put": guard_put}],
            )
        except ClientError as exc:
            if _error_code(exc) != "TransactionCanceledException":
                raise self._upstream("transact_write_items", exc) from exc

            reasons = [r.get("Code") for r in exc.response.get("CancellationReasons", [])]
            if len(reasons) > 1 and reasons[1] == "ConditionalCheckFailed":
                raise ConflictAppError(
                    code="record_conflict",
                    message="The owner already has a record for this destination.",
                    conflict_on="dedup_key",
                ) from exc
            if reasons and reasons[0] == "ConditionalCheckFailed":
                raise ConflictAppError(
                    code="record_conflict",
                    message="A record with this id already exists.",
                    conflict_on="id",
                ) from exc
            raise self._upstream("transact_write_items", exc) from exc

        return record

    async def find_by_owner_and_destination(
        self, owner_id: str, destination: str
    ) -> Record | None:
        try:
            response = await self._call(
                "get_item",
                TableName=self._records_table,
                Key=_serialize({"id": dedup_guard_id(owner_id, destination)}),
                ConsistentRead=True,
            )
        except ClientError as exc:
            raise self._upstream("get_item", exc) from exc

        guard = response.get("Item")
        if not guard:
            return None
        return await self.get(_deserialize(guard)["record_id"])

    async def atomic_increment(
        self,
        record_id: str,
        field: str,
        delta: int,
        timestamp_field: str | None = None,
        timestamp_value: datetime | None = None,
    ) -> Record:
        check_increment_fields(field, timestamp_field)

        names = {"#id": "id", "#f": field}
        values: dict[str, Any] = {":d": _serializer.serialize(delta)}
        expression = "ADD #f :d"
        if timestamp_field is not None:
            names["#ts"] = timestamp_field
            values[":ts"] = _serializer.serialize(
                timestamp_value.isoformat() if timestamp_value else None
            )
            expression = f"SET #ts = :ts {expression}"

        try:
            response = await self._call(
                "update_item",
                TableName=self._records_table,
                Key=_serialize({"id": record_id}),
                UpdateExpression=expression,
                ConditionExpression="attribute_exists(#id)",
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues="ALL_NEW",
            )
        except ClientError as exc:
            if _error_code(exc) == "ConditionalCheckFailedException":
                raise _not_found(record_id) from exc
            raise self._upstream("update_item", exc) from exc

        return _item_to_record(response["Attributes"])

    async def delete(self, record_id: str) -> None:
        record = await self.get(record_id)
        if record is None:
            raise _not_found(record_id)

        actions: list[dict[str, Any]] = [
            {
                "Delete": {
                    "TableName": self._records_table,
                    "Key": _serialize({"id": record_id}),
                    "ConditionExpression": "attribute_exists(#id)",
                    "ExpressionAttributeNames": {"#id": "id"},
                }
            }
        ]
        if record.owner_id:
            actions.append(
                {
                    "Delete": {
                        "TableName": self._records_table,
                        "Key": _serialize(
                            {"id": dedup_guard_id(record.owner_id, record.destination)}
                        ),
                    }
                }
            )

        try:
            await self._call("transact_write_items", TransactItems=actions)
        except ClientError as exc:
            if _error_code(exc) == "TransactionCanceledException":
                reasons = exc.response.get("CancellationReasons", [])
                if reasons and reasons[0].get("Code") == "ConditionalCheckFailed":
                    raise _not_found(record_id) from exc
            raise self._upstream("transact_write_items", exc) from exc

    async def append_scan(self, event: ScanEvent) -> None:
        try:
            await self._call(
                "put_item",
                TableName=self._scans_table,
                Item=_event_to_item(event),
            )
        except ClientError as exc:
            raise self._upstream("put_item", exc) from exc

    async def account_scan(self, event: ScanEvent) -> None:
        counter_update = {
            "TableName": self._records_table,
            "Key": _serialize({"id": event.record_id}),
            "UpdateExpression": "SET #ts = :ts ADD #f :one",
            "ConditionExpression": "attribute_exists(#id)",
            "ExpressionAttributeNames": {"#id": "id", "#f": "scan_count", "#ts": "last_scan_at"},
            "ExpressionAttributeValues": {
                ":one": _serializer.serialize(1),
                ":ts": _serializer.serialize(event.scan_at.isoformat()),
            },
        }
        scan_put = {"TableName": self._scans_table, "Item": _event_to_item(event)}

        try:
            await self._call(
                "transact_write_items",
                TransactItems=[{"Update": counter_update}, {"Put": scan_put}],
            )
        except ClientError as exc:
            if _error_code(exc) == "TransactionCanceledException":
                reasons = exc.response.get("CancellationReasons", [])
                if reasons and reasons[0].get("Code") == "ConditionalCheckFailed":
                    raise _not_found(event.record_id) from exc
            raise self._upstream("transact_write_items", exc) from exc

    async def list_by_owner(
        self, owner_id: str, *, limit: int = 20, offset: int = 0
    ) -> list[Record]:
        wanted = offset + limit
        items: list[dict[str, Any]] = []
        query: dict[str, Any] = {
            "TableName": self._records_table,
            "IndexName": self._owner_index,
            "KeyConditionExpression": "owner_id = :owner",
            "ExpressionAttributeValues": {":owner": _serializer.serialize(owner_id)},
            "ScanIndexForward": False,
        }

        while len(items) < wanted:
            query["Limit"] = wanted - len(items)
            try:
                response = await self._call("query", **query)
            except ClientError as exc:
                raise self._upstream("query", exc) from exc
            items.extend(response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                break
            query["ExclusiveStartKey"] = last_key

        return [_item_to_record(item) for item in items[offset:wanted]]

    async def list_scans(self, record_id: str, *, limit: int = 50) -> list[ScanEvent]:
        try:
            response = await self._call(
                "query",
                TableName=self._scans_table,
                KeyConditionExpression="record_id = :rid",
                ExpressionAttributeValues={":rid": _serializer.serialize(record_id)},
                ScanIndexForward=False,
                Limit=limit,
            )
        except ClientError as exc:
            raise self._upstream("query", exc) from exc
        return [_item_to_event(item) for item in response.get("Items", [])]
