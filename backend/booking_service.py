from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from typing import Optional, Dict, Any
import logging

from models import Actor, BookingCreate, BookingUpdate, BookingRef, Permission, StatusChangeResult
from permissions import PermissionChecker
from activity_log_service import ActivityLogService
from core.atomic_numbering import AtomicDocumentNumbering
from core.concurrency_guard import ConcurrencyGuard, utc_now, to_object_id
from core.errors import NotFoundError, ConcurrentModificationError
from core.link_integrity import tombstone_update
from core.state_machine_wiring import StatusTransitionValidator

logger = logging.getLogger(__name__)


class BookingService:
    """Governed booking lifecycle: capability checks, transitions, guarded writes."""

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        activity_log: Optional[ActivityLogService] = None,
        numbering: Optional[AtomicDocumentNumbering] = None
    ):
        self.db = db
        self.collection = db.bookings
        self.activity_log = activity_log or ActivityLogService(db)
        self.numbering = numbering or AtomicDocumentNumbering(db)
        self.concurrency = ConcurrencyGuard(db, "booking")
        self.status_validator = StatusTransitionValidator(db, "booking", self.activity_log)
        self.permission_checker = PermissionChecker()

    async def _find(self, booking_id: str, active_only: bool = True, session=None) -> Dict[str, Any]:
        oid = to_object_id(booking_id)
        booking = None
        if oid is not None:
            query: Dict[str, Any] = {"_id": oid}
            if active_only:
                query["deleted_at"] = None
            booking = await self.collection.find_one(query, session=session)

        if booking is None:
            raise NotFoundError("booking", str(booking_id))
        return booking

    async def get_booking(self, booking_id: str, session=None) -> Dict[str, Any]:
        return await self._find(booking_id, session=session)

    async def allowed_transitions(self, booking_id: str) -> Dict[str, Any]:
        booking = await self._find(booking_id)
        return {
            "booking_id": str(booking["_id"]),
            "current_status": booking.get("status"),
            "allowed_transitions": self.status_validator.allowed_next(booking.get("status"))
        }

    async def create_booking(self, actor: Actor, data: BookingCreate, session=None) -> Dict[str, Any]:
        self.permission_checker.require(actor, Permission.CREATE_BOOKINGS)

        booking_number = await self.numbering.generate_booking_number(session=session)
        now = utc_now()
        booking = {
            **data.dict(),
            "booking_number": booking_number,
            "status": "draft",
            "deleted_at": None,
            "created_by": actor.id,
            "created_at": now,
            "updated_at": now
        }
        result = await self.collection.insert_one(booking, session=session)
        booking["_id"] = result.inserted_id

        logger.info(f"Booking created: {booking_number} by {actor.id}")
        await self.activity_log.log_booking_event("booking:created", actor, booking)
        return booking

    async def update_booking(
        self,
        actor: Actor,
        booking_id: str,
        data: BookingUpdate,
        session=None
    ) -> Dict[str, Any]:
        """
        Raises:
            PermissionDeniedError, NotFoundError, InvalidTransitionError,
            ConcurrentModificationError
        """
        self.permission_checker.require(actor, Permission.EDIT_BOOKINGS)
        booking = await self._find(booking_id, session=session)
        ref = BookingRef.from_mongo(booking)

        changes = data.dict(exclude_unset=True, exclude_none=True, exclude={"expected_updated_at"})
        if not changes:
            return booking

        metadata: Dict[str, Any] = {"changed_fields": sorted(changes.keys())}
        if "status" in changes:
            self.status_validator.validate(ref.status, changes["status"])
            metadata["previous_status"] = ref.status
            metadata["new_status"] = changes["status"]

        expected = data.expected_updated_at or booking.get("updated_at")
        updated = await self.concurrency.guarded_update(ref.id, expected, changes, session=session)

        await self.activity_log.log_booking_event("booking:updated", actor, updated, metadata)
        return updated

    async def update_booking_status(
        self,
        actor: Actor,
        booking_id: str,
        status: str,
        skip_validation: bool = False,
        session=None
    ) -> StatusChangeResult:
        self.permission_checker.require(actor, Permission.EDIT_BOOKINGS)
        if skip_validation:
            self.permission_checker.check_admin_role(actor)

        return await self.status_validator.update_status(
            booking_id,
            status,
            actor,
            skip_validation=skip_validation,
            session=session
        )

    async def soft_delete_booking(self, actor: Actor, booking_id: str, session=None) -> Dict[str, Any]:
        """Soft delete (idempotent)."""
        self.permission_checker.require(actor, Permission.DELETE_BOOKINGS)

        booking = await self._find(booking_id, active_only=False, session=session)
        if booking.get("deleted_at") is not None:
            return booking

        updated = await self.collection.find_one_and_update(
            {"_id": booking["_id"], "deleted_at": None, "updated_at": booking.get("updated_at")},
            tombstone_update(booking.get("updated_at")),
            return_document=ReturnDocument.AFTER,
            session=session
        )

        if updated is None:
            current = await self._find(booking_id, active_only=False, session=session)
            if current.get("deleted_at") is not None:
                return current
            raise ConcurrentModificationError(
                entity_type="booking",
                entity_id=str(booking["_id"]),
                expected_updated_at=booking.get("updated_at"),
                actual_updated_at=current.get("updated_at")
            )

        logger.info(f"Booking soft-deleted: {booking.get('booking_number')} by {actor.id}")
        await self.activity_log.log_booking_event("booking:deleted", actor, updated)
        return updated

    async def create_indexes(self):
        await self.collection.create_index([("status", 1), ("deleted_at", 1)])
