from motor.motor_asyncio import AsyncIOMotorDatabase
from datetime import datetime
from typing import Optional, Dict, Any, List
import logging

from models import Actor

logger = logging.getLogger(__name__)

DOCUMENT_EVENTS = {
    "document:created",
    "document:updated",
    "document:deleted",
    "document:restored",
    "document:status_changed",
    "document:approved",
    "document:printed",
}

BOOKING_EVENTS = {
    "booking:created",
    "booking:updated",
    "booking:deleted",
    "booking:status_changed",
    "booking:card_printed",
}


def _actor_name(actor: Actor) -> str:
    return actor.name or actor.username or actor.id


def generate_document_description(
    activity_type: str,
    actor: Actor,
    document: Dict[str, Any],
    metadata: Optional[Dict[str, Any]] = None
) -> str:
    metadata = metadata or {}
    name = _actor_name(actor)
    number = document.get("document_number") or "N/A"
    doc_type = document.get("document_type", "document")

    if activity_type == "document:status_changed":
        new_status = metadata.get("new_status") or document.get("status")
        return f"{name} changed {number} status to {new_status}"
    if activity_type in DOCUMENT_EVENTS:
        verb = activity_type.split(":", 1)[1]
        return f"{name} {verb} {doc_type} {number}"
    return f"{name} performed {activity_type} on {number}"


def generate_booking_description(
    activity_type: str,
    actor: Actor,
    booking: Dict[str, Any],
    metadata: Optional[Dict[str, Any]] = None
) -> str:
    metadata = metadata or {}
    name = _actor_name(actor)
    number = booking.get("booking_number") or "N/A"

    if activity_type == "booking:created":
        return f"{name} created booking {number} for {booking.get('guest_name') or 'Unknown'}"
    if activity_type == "booking:status_changed":
        previous = metadata.get("previous_status") or "unknown"
        new_status = metadata.get("new_status") or booking.get("status")
        return f"{name} changed booking {number} status from {previous} to {new_status}"
    if activity_type == "booking:card_printed":
        return f"{name} printed booking card for {number}"
    if activity_type in BOOKING_EVENTS:
        verb = activity_type.split(":", 1)[1]
        return f"{name} {verb} booking {number}"
    return f"{name} performed {activity_type} on booking {number}"


class ActivityLogService:
    """Insert-only activity trail for governed writes"""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db.activity_logs

    async def log_activity(
        self,
        activity_type: str,
        actor: Actor,
        description: str,
        resource_id: Optional[str] = None,
        resource_type: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Log an activity (INSERT ONLY).

        The governed write has already happened when this runs, so a
        logging failure is reported and swallowed.
        """
        entry = {
            "type": activity_type,
            "user_id": actor.id,
            "username": actor.username or actor.name,
            "description": description,
            "resource_id": resource_id,
            "resource_type": resource_type,
            "metadata": metadata or {},
            "timestamp": datetime.utcnow()
        }

        try:
            result = await self.collection.insert_one(entry)
            logger.info(f"Activity logged: {activity_type} on {resource_type}:{resource_id} by user:{actor.id}")
        except Exception as e:
            logger.error(f"Failed to create activity log: {str(e)}")
            return None

        entry.pop("_id", None)
        entry["activity_id"] = str(result.inserted_id)
        return entry

    async def log_document_event(
        self,
        activity_type: str,
        actor: Actor,
        document: Dict[str, Any],
        metadata: Optional[Dict[str, Any]] = None
    ):
        description = generate_document_description(activity_type, actor, document, metadata)
        return await self.log_activity(
            activity_type,
            actor,
            description,
            resource_id=str(document["_id"]),
            resource_type="document",
            metadata={
                "document_number": document.get("document_number"),
                "document_type": document.get("document_type"),
                "status": document.get("status"),
                **(metadata or {})
            }
        )

    async def log_booking_event(
        self,
        activity_type: str,
        actor: Actor,
        booking: Dict[str, Any],
        metadata: Optional[Dict[str, Any]] = None
    ):
        description = generate_booking_description(activity_type, actor, booking, metadata)
        return await self.log_activity(
            activity_type,
            actor,
            description,
            resource_id=str(booking["_id"]),
            resource_type="booking",
            metadata={
                "booking_number": booking.get("booking_number"),
                "guest_name": booking.get("guest_name"),
                "status": booking.get("status"),
                **(metadata or {})
            }
        )

    async def get_activity_logs(
        self,
        user_id: Optional[str] = None,
        activity_type: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """Retrieve activity logs (READ ONLY), newest first"""
        query: Dict[str, Any] = {}

        if user_id:
            query["user_id"] = user_id
        if activity_type:
            query["type"] = activity_type
        if resource_type:
            query["resource_type"] = resource_type
        if resource_id:
            query["resource_id"] = resource_id
        if start_date or end_date:
            query["timestamp"] = {}
            if start_date:
                query["timestamp"]["$gte"] = start_date
            if end_date:
                query["timestamp"]["$lte"] = end_date

        cursor = self.collection.find(query).sort("timestamp", -1).skip(offset).limit(limit)
        logs = await cursor.to_list(length=limit)

        for log in logs:
            log["activity_id"] = str(log.pop("_id"))

        return logs

    async def get_resource_activity(self, resource_type: str, resource_id: str, limit: int = 50):
        return await self.get_activity_logs(
            resource_type=resource_type,
            resource_id=resource_id,
            limit=limit
        )

    async def create_indexes(self):
        await self.collection.create_index([("resource_type", 1), ("resource_id", 1)])
        await self.collection.create_index([("user_id", 1), ("timestamp", -1)])
