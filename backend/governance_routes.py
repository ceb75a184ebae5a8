"""
LIFECYCLE GOVERNANCE API ROUTES

Documents (invoice, receipt, payment voucher, statement of payment) and
bookings, every mutation routed through the governance services:
- Role/status policy (PermissionChecker)
- Status transition tables
- Optimistic concurrency on updated_at
- One active Statement of Payment per Payment Voucher
- Voucher deletion blocked while referenced

Governance errors map to HTTP status codes in to_http_exception().
"""

from fastapi import APIRouter, HTTPException, status, Depends, Request
from bson import ObjectId, Decimal128
from datetime import datetime
from typing import Optional, Dict, Any
import logging

from auth import get_current_actor
from models import (
    Actor, Permission, DocumentCreate, DocumentUpdate, StatusChangeRequest,
    BookingCreate, BookingUpdate, StatusChangeResult
)
from permissions import PermissionChecker
from activity_log_service import ActivityLogService
from document_service import DocumentService
from booking_service import BookingService
from core.atomic_numbering import AtomicDocumentNumbering
from core.errors import GovernanceError, ErrorCodes

logger = logging.getLogger(__name__)


ERROR_STATUS_CODES = {
    ErrorCodes.PERMISSION_DENIED: status.HTTP_403_FORBIDDEN,
    ErrorCodes.INVALID_STATUS_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorCodes.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCodes.ACTIVE_LINK_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCodes.REFERENTIAL_INTEGRITY: status.HTTP_409_CONFLICT,
    ErrorCodes.NOT_FOUND: status.HTTP_404_NOT_FOUND,
}


def to_http_exception(error: GovernanceError) -> HTTPException:
    return HTTPException(
        status_code=ERROR_STATUS_CODES.get(error.code, status.HTTP_400_BAD_REQUEST),
        detail=error.to_dict()
    )


def status_change_response(result: StatusChangeResult) -> Dict[str, Any]:
    """Failed status changes come back as results; surface them as HTTP errors."""
    if not result.success:
        raise HTTPException(
            status_code=ERROR_STATUS_CODES.get(result.error_code, status.HTTP_400_BAD_REQUEST),
            detail={
                "code": result.error_code,
                "message": result.error,
                "details": result.dict()
            }
        )
    return result.dict()


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Serialize MongoDB document for JSON response (handles ObjectId, Decimal128, datetime)"""
    if doc is None:
        return None
    result = {}
    for key, value in doc.items():
        if key == "_id":
            result["id"] = str(value)
        elif isinstance(value, ObjectId):
            result[key] = str(value)
        elif isinstance(value, Decimal128):
            result[key] = float(value.to_decimal())
        elif isinstance(value, datetime):
            result[key] = value.isoformat()
        elif isinstance(value, dict):
            result[key] = serialize_doc(value)
        elif isinstance(value, list):
            result[key] = [
                serialize_doc(item) if isinstance(item, dict)
                else str(item) if isinstance(item, ObjectId)
                else item
                for item in value
            ]
        else:
            result[key] = value
    return result


# Create router
governance_router = APIRouter(prefix="/api/v1", tags=["Lifecycle Governance"])

permission_checker = PermissionChecker()


def install_services(app, db):
    """Bind the governance services to an app and create indexes on startup."""
    activity_log = ActivityLogService(db)
    numbering = AtomicDocumentNumbering(db)

    app.state.activity_log = activity_log
    app.state.document_service = DocumentService(db, activity_log, numbering)
    app.state.booking_service = BookingService(db, activity_log, numbering)

    @app.on_event("startup")
    async def create_governance_indexes():
        await create_indexes(app)

    return app


async def create_indexes(app):
    await app.state.document_service.create_indexes()
    await app.state.booking_service.create_indexes()
    await app.state.activity_log.create_indexes()
    logger.info("Governance indexes created")


def get_document_service(request: Request) -> DocumentService:
    return request.app.state.document_service


def get_booking_service(request: Request) -> BookingService:
    return request.app.state.booking_service


def get_activity_log(request: Request) -> ActivityLogService:
    return request.app.state.activity_log


# ============================================
# DOCUMENT ENDPOINTS
# ============================================

@governance_router.post("/documents", status_code=status.HTTP_201_CREATED)
async def create_document(
    document_data: DocumentCreate,
    actor: Actor = Depends(get_current_actor),
    service: DocumentService = Depends(get_document_service)
):
    """
    Create a document in Draft status.

    Statements of payment must carry linked_voucher_id; a voucher may have
    only one active statement.
    """
    try:
        document = await service.create_document(actor, document_data)
    except GovernanceError as e:
        raise to_http_exception(e)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return serialize_doc(document)


@governance_router.get("/documents/{document_id}")
async def get_document(
    document_id: str,
    actor: Actor = Depends(get_current_actor),
    service: DocumentService = Depends(get_document_service)
):
    try:
        permission_checker.require(actor, Permission.VIEW_DOCUMENTS)
        document = await service.get_document(document_id)
    except GovernanceError as e:
        raise to_http_exception(e)

    return serialize_doc(document)


@governance_router.get("/documents/{document_id}/permissions")
async def get_document_permissions(
    document_id: str,
    actor: Actor = Depends(get_current_actor),
    service: DocumentService = Depends(get_document_service)
):
    """Edit/delete capability and the restriction messages the UI shows"""
    try:
        result = await service.get_permissions(actor, document_id)
    except GovernanceError as e:
        raise to_http_exception(e)

    return result.dict()


@governance_router.patch("/documents/{document_id}")
async def update_document(
    document_id: str,
    update_data: DocumentUpdate,
    actor: Actor = Depends(get_current_actor),
    service: DocumentService = Depends(get_document_service)
):
    """
    Update a document.

    RULES:
    - Send expected_updated_at from your last read; a stale value is rejected (409)
    - Status changes must follow the document transition table
    """
    try:
        document = await service.update_document(actor, document_id, update_data)
    except GovernanceError as e:
        raise to_http_exception(e)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return serialize_doc(document)


@governance_router.post("/documents/{document_id}/status")
async def update_document_status(
    document_id: str,
    status_request: StatusChangeRequest,
    actor: Actor = Depends(get_current_actor),
    service: DocumentService = Depends(get_document_service)
):
    try:
        result = await service.update_document_status(
            actor,
            document_id,
            status_request.status,
            skip_validation=status_request.skip_validation
        )
    except GovernanceError as e:
        raise to_http_exception(e)

    return status_change_response(result)


@governance_router.delete("/documents/{document_id}")
async def delete_document(
    document_id: str,
    actor: Actor = Depends(get_current_actor),
    service: DocumentService = Depends(get_document_service)
):
    """
    Soft delete a document (NO HARD DELETE).

    Payment vouchers referenced by an active statement of payment are
    rejected until the statement is deleted.
    """
    try:
        document = await service.soft_delete_document(actor, document_id)
    except GovernanceError as e:
        raise to_http_exception(e)

    return {"status": "success", "document_id": document_id, "document": serialize_doc(document)}


@governance_router.post("/documents/{document_id}/restore")
async def restore_document(
    document_id: str,
    actor: Actor = Depends(get_current_actor),
    service: DocumentService = Depends(get_document_service)
):
    try:
        document = await service.restore_document(actor, document_id)
    except GovernanceError as e:
        raise to_http_exception(e)

    return serialize_doc(document)


# ============================================
# PAYMENT VOUCHER LINK ENDPOINTS
# ============================================

@governance_router.get("/vouchers/{voucher_id}/deletion-check")
async def check_voucher_deletion(
    voucher_id: str,
    actor: Actor = Depends(get_current_actor),
    service: DocumentService = Depends(get_document_service)
):
    """Early feedback before a voucher delete; the delete re-checks."""
    try:
        permission_checker.require(actor, Permission.VIEW_DOCUMENTS)
    except GovernanceError as e:
        raise to_http_exception(e)

    check = await service.deletion_guard.check_can_delete_voucher(voucher_id)
    return check.dict()


@governance_router.get("/vouchers/{voucher_id}/link-availability")
async def check_voucher_link_availability(
    voucher_id: str,
    actor: Actor = Depends(get_current_actor),
    service: DocumentService = Depends(get_document_service)
):
    try:
        permission_checker.require(actor, Permission.VIEW_DOCUMENTS)
    except GovernanceError as e:
        raise to_http_exception(e)

    existing = await service.link_manager.find_active_statement(voucher_id)
    return {
        "voucher_id": voucher_id,
        "can_link": existing is None,
        "existing_statement_number": existing.get("document_number") if existing else None
    }


# ============================================
# BOOKING ENDPOINTS
# ============================================

@governance_router.post("/bookings", status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service)
):
    try:
        booking = await service.create_booking(actor, booking_data)
    except GovernanceError as e:
        raise to_http_exception(e)

    return serialize_doc(booking)


@governance_router.get("/bookings/{booking_id}")
async def get_booking(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service)
):
    try:
        permission_checker.require(actor, Permission.VIEW_BOOKINGS)
        booking = await service.get_booking(booking_id)
    except GovernanceError as e:
        raise to_http_exception(e)

    return serialize_doc(booking)


@governance_router.get("/bookings/{booking_id}/allowed-transitions")
async def get_booking_transitions(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service)
):
    try:
        permission_checker.require(actor, Permission.VIEW_BOOKINGS)
        return await service.allowed_transitions(booking_id)
    except GovernanceError as e:
        raise to_http_exception(e)


@governance_router.patch("/bookings/{booking_id}")
async def update_booking(
    booking_id: str,
    update_data: BookingUpdate,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service)
):
    try:
        booking = await service.update_booking(actor, booking_id, update_data)
    except GovernanceError as e:
        raise to_http_exception(e)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return serialize_doc(booking)


@governance_router.post("/bookings/{booking_id}/status")
async def update_booking_status(
    booking_id: str,
    status_request: StatusChangeRequest,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service)
):
    try:
        result = await service.update_booking_status(
            actor,
            booking_id,
            status_request.status,
            skip_validation=status_request.skip_validation
        )
    except GovernanceError as e:
        raise to_http_exception(e)

    return status_change_response(result)


@governance_router.delete("/bookings/{booking_id}")
async def delete_booking(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service)
):
    """Soft delete a booking (NO HARD DELETE)"""
    try:
        booking = await service.soft_delete_booking(actor, booking_id)
    except GovernanceError as e:
        raise to_http_exception(e)

    return {"status": "success", "booking_id": booking_id, "booking": serialize_doc(booking)}


# ============================================
# ACTIVITY LOG / SYSTEM
# ============================================

@governance_router.get("/activity")
async def get_activity(
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    activity_type: Optional[str] = None,
    user_id: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
    actor: Actor = Depends(get_current_actor),
    activity_log: ActivityLogService = Depends(get_activity_log)
):
    try:
        permission_checker.require(actor, Permission.VIEW_AUDIT_LOGS)
    except GovernanceError as e:
        raise to_http_exception(e)

    logs = await activity_log.get_activity_logs(
        user_id=user_id,
        activity_type=activity_type,
        resource_type=resource_type,
        resource_id=resource_id,
        limit=limit,
        offset=offset
    )
    return [serialize_doc(log) for log in logs]


@governance_router.post("/system/init-indexes")
async def initialize_indexes(request: Request, actor: Actor = Depends(get_current_actor)):
    """Create governance indexes, including the one-active-statement-per-voucher constraint"""
    try:
        permission_checker.check_admin_role(actor)
    except GovernanceError as e:
        raise to_http_exception(e)

    await create_indexes(request.app)

    return {"status": "success", "message": "Governance indexes created"}


@governance_router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow(),
        "version": "1.0.0"
    }
