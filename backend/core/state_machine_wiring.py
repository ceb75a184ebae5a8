"""
LIFECYCLE GOVERNANCE: STATUS TRANSITION WIRING

Binds the transition tables to storage. update_status() reads the current
status, validates the edge, writes the new status and records an activity
event carrying {previous_status, new_status}.

Expected failures (not found, invalid transition, lost race) come back as a
StatusChangeResult so the caller can render them directly. Storage errors
propagate unchanged.

Entities:
- Booking: draft → planning → confirmed → in_progress → completed
- Document: draft → issued → paid → completed
(both: any non-terminal → cancelled, cancelled → draft)
"""

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from typing import List
import logging

from models import Actor, StatusChangeResult
from core.concurrency_guard import ENTITY_COLLECTIONS, next_version, to_object_id
from core.errors import ErrorCodes, InvalidTransitionError
from core.state_machine import state_machine_registry

logger = logging.getLogger(__name__)


class StatusTransitionValidator:
    """
    Storage-bound status transitions for one entity kind.

    Example:
        bookings = StatusTransitionValidator(db, "booking", activity_log)
        result = await bookings.update_status(booking_id, "planning", actor)
        if not result.success:
            show(result.error, result.allowed_transitions)
    """

    def __init__(self, db: AsyncIOMotorDatabase, entity: str, activity_log=None):
        self.db = db
        self.entity = entity
        self.table = state_machine_registry.get(entity)
        self.collection = db[ENTITY_COLLECTIONS[entity]]
        self.activity_log = activity_log

    # =========================================================================
    # PURE CHECKS
    # =========================================================================

    def is_valid_transition(self, current, target) -> bool:
        return self.table.is_valid_transition(current, target)

    def allowed_next(self, current) -> List[str]:
        return self.table.allowed_next(current)

    def validate(self, current, target) -> None:
        self.table.validate(current, target)

    # =========================================================================
    # STORAGE-BOUND TRANSITION
    # =========================================================================

    async def update_status(
        self,
        entity_id: str,
        target,
        actor: Actor,
        skip_validation: bool = False,
        session=None
    ) -> StatusChangeResult:
        """
        Change an entity's status.

        Args:
            entity_id: Entity ID
            target: Target status
            actor: Acting user (recorded in the activity log)
            skip_validation: Admin override; bypasses the edge table but
                never allows an undeclared status

        Returns:
            StatusChangeResult (success flag, previous/new status, error code,
            allowed transitions)
        """
        target = getattr(target, "value", target)

        oid = to_object_id(entity_id)
        current = None
        if oid is not None:
            current = await self.collection.find_one({"_id": oid, "deleted_at": None}, session=session)

        if current is None:
            return StatusChangeResult(
                success=False,
                entity=self.entity,
                entity_id=str(entity_id),
                error=f"{self.entity.capitalize()} not found",
                error_code=ErrorCodes.NOT_FOUND
            )

        previous = current.get("status")
        allowed = self.table.allowed_next(previous)

        if (not skip_validation or not self.table.is_known_state(target)) and \
                not self.table.is_valid_transition(previous, target):
            error = InvalidTransitionError(self.entity, previous, target, allowed)
            logger.warning(f"[STATE_MACHINE] {error.message}")
            return StatusChangeResult(
                success=False,
                entity=self.entity,
                entity_id=str(oid),
                previous_status=previous,
                error=error.message,
                error_code=error.code,
                allowed_transitions=allowed
            )

        if previous == target:
            return StatusChangeResult(
                success=True,
                entity=self.entity,
                entity_id=str(oid),
                previous_status=previous,
                new_status=target,
                allowed_transitions=allowed
            )

        # Conditioned on the version just read: a concurrent writer wins, we report
        updated = await self.collection.find_one_and_update(
            {
                "_id": oid,
                "deleted_at": None,
                "status": previous,
                "updated_at": current.get("updated_at")
            },
            {"$set": {
                "status": target,
                "updated_at": next_version(current.get("updated_at"))
            }},
            return_document=ReturnDocument.AFTER,
            session=session
        )

        if updated is None:
            logger.warning(f"[STATE_MACHINE] Lost race on {self.entity} {oid}: '{previous}' -> '{target}'")
            return StatusChangeResult(
                success=False,
                entity=self.entity,
                entity_id=str(oid),
                previous_status=previous,
                error=f"{self.entity.capitalize()} was modified by another user. Refresh and try again.",
                error_code=ErrorCodes.CONFLICT,
                allowed_transitions=allowed
            )

        if skip_validation:
            logger.warning(f"[STATE_MACHINE] Validation skipped for {self.entity} {oid} by {actor.id}")

        logger.info(f"[STATE_MACHINE] Completed {self.entity} {oid}: '{previous}' -> '{target}'")

        await self._log_status_change(updated, actor, previous, target, skip_validation)

        return StatusChangeResult(
            success=True,
            entity=self.entity,
            entity_id=str(oid),
            previous_status=previous,
            new_status=target,
            allowed_transitions=self.table.allowed_next(target)
        )

    async def _log_status_change(self, entity_doc, actor: Actor, previous: str, target: str, skipped: bool):
        if self.activity_log is None:
            return

        metadata = {"previous_status": previous, "new_status": target}
        if skipped:
            metadata["validation_skipped"] = True

        if self.entity == "booking":
            await self.activity_log.log_booking_event("booking:status_changed", actor, entity_doc, metadata)
        else:
            await self.activity_log.log_document_event("document:status_changed", actor, entity_doc, metadata)

