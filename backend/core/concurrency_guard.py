"""
LIFECYCLE GOVERNANCE: OPTIMISTIC CONCURRENCY GUARD

Provides:
1. Version check on updated_at (single scalar version marker)
2. Atomic conditional write: UPDATE ... WHERE _id = ? AND updated_at = ?
3. NotFound vs ConcurrentModification classification on a missed write
4. Monotonic updated_at stamping
5. Protected-field enforcement on mutations

A losing writer is always told to refetch; nothing is retried here.
"""

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, Union
from bson import ObjectId
import logging

from core.errors import ConcurrentModificationError, NotFoundError

logger = logging.getLogger(__name__)

ENTITY_COLLECTIONS = {
    "document": "documents",
    "booking": "bookings",
}

# Managed by the governance layer only
PROTECTED_FIELDS = frozenset({
    "_id",
    "created_at",
    "updated_at",
    "deleted_at",
    "document_type",
    "document_number",
    "linked_voucher_id",
    "active_voucher_link",
})

Timestamp = Union[datetime, str]


def _truncate_ms(value: datetime) -> datetime:
    # BSON datetimes carry millisecond precision
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def utc_now() -> datetime:
    return _truncate_ms(datetime.utcnow())


def normalize_timestamp(value: Optional[Timestamp]) -> Optional[datetime]:
    """Coerce a caller-supplied version marker to naive UTC milliseconds."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return _truncate_ms(value)


def next_version(previous: Optional[datetime]) -> datetime:
    """New updated_at, strictly after the previous one."""
    now = utc_now()
    if previous is not None and now <= previous:
        return previous + timedelta(milliseconds=1)
    return now


def to_object_id(entity_id: Any) -> Optional[ObjectId]:
    if isinstance(entity_id, ObjectId):
        return entity_id
    if isinstance(entity_id, str) and ObjectId.is_valid(entity_id):
        return ObjectId(entity_id)
    return None


class ConcurrencyGuard:
    """
    Optimistic concurrency control for one entity collection.

    Every write issued through the guard is a compare-and-swap on
    updated_at, so two writers can never both succeed against the same
    version.
    """

    def __init__(self, db: AsyncIOMotorDatabase, entity_type: str):
        if entity_type not in ENTITY_COLLECTIONS:
            raise ValueError(f"Unknown entity type: {entity_type}")
        self.db = db
        self.entity_type = entity_type
        self.collection = db[ENTITY_COLLECTIONS[entity_type]]

    async def guarded_update(
        self,
        entity_id: str,
        expected_updated_at: Optional[Timestamp],
        changes: Dict[str, Any],
        session=None
    ) -> Dict[str, Any]:
        """
        Apply `changes` only if the entity is still at `expected_updated_at`.

        Args:
            entity_id: Entity ID
            expected_updated_at: Last version the caller read. When None the
                current stored version is used as the expected one.
            changes: Field-level $set payload

        Returns:
            The refreshed entity document

        Raises:
            NotFoundError if the entity is missing or soft-deleted
            ConcurrentModificationError if the version moved on
            ValueError if `changes` touches a protected field
        """
        protected = PROTECTED_FIELDS.intersection(changes.keys())
        if protected:
            raise ValueError(f"Cannot update protected fields: {sorted(protected)}")

        oid = to_object_id(entity_id)
        if oid is None:
            raise NotFoundError(self.entity_type, str(entity_id))

        expected = normalize_timestamp(expected_updated_at)

        if expected is None:
            current = await self.collection.find_one(
                {"_id": oid, "deleted_at": None},
                {"updated_at": 1},
                session=session
            )
            if current is None:
                raise NotFoundError(self.entity_type, str(entity_id))
            expected = current.get("updated_at")

        updated = await self.collection.find_one_and_update(
            {"_id": oid, "deleted_at": None, "updated_at": expected},
            {"$set": {**changes, "updated_at": next_version(expected)}},
            return_document=ReturnDocument.AFTER,
            session=session
        )

        if updated is None:
            await self._raise_for_missed_write(oid, expected, session=session)

        logger.info(
            f"[CONCURRENCY] Updated {self.entity_type} {entity_id} "
            f"fields={sorted(changes.keys())}"
        )
        return updated

    async def check_version(self, entity_id: str, session=None) -> Optional[datetime]:
        """Current updated_at of an active entity, or None."""
        oid = to_object_id(entity_id)
        if oid is None:
            return None

        doc = await self.collection.find_one(
            {"_id": oid, "deleted_at": None},
            {"updated_at": 1},
            session=session
        )
        return doc.get("updated_at") if doc else None

    async def is_stale(self, entity_id: str, last_known_updated_at: Timestamp, session=None) -> bool:
        """True if the entity changed since `last_known_updated_at`."""
        current = await self.check_version(entity_id, session=session)
        if current is None:
            return False
        return current != normalize_timestamp(last_known_updated_at)

    async def _raise_for_missed_write(self, oid: ObjectId, expected: Optional[datetime], session=None):
        current = await self.collection.find_one(
            {"_id": oid},
            {"updated_at": 1, "deleted_at": 1},
            session=session
        )

        if current is None or current.get("deleted_at") is not None:
            raise NotFoundError(self.entity_type, str(oid))

        logger.warning(
            f"[CONCURRENCY] Stale write rejected for {self.entity_type} {oid}: "
            f"expected={expected} actual={current.get('updated_at')}"
        )
        raise ConcurrentModificationError(
            entity_type=self.entity_type,
            entity_id=str(oid),
            expected_updated_at=expected,
            actual_updated_at=current.get("updated_at")
        )
