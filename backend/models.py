from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum


# ============================================
# ENUMERATIONS
# ============================================
class Role(str, Enum):
    VIEWER = "viewer"
    ACCOUNTANT = "accountant"
    MANAGER = "manager"
    ADMIN = "admin"
    OPERATIONS = "operations"


class Permission(str, Enum):
    VIEW_DOCUMENTS = "view_documents"
    CREATE_DOCUMENTS = "create_documents"
    EDIT_DOCUMENTS = "edit_documents"
    DELETE_DOCUMENTS = "delete_documents"
    APPROVE_DOCUMENTS = "approve_documents"
    PRINT_DOCUMENTS = "print_documents"
    MANAGE_ACCOUNTS = "manage_accounts"
    MANAGE_USERS = "manage_users"
    VIEW_AUDIT_LOGS = "view_audit_logs"
    MANAGE_SETTINGS = "manage_settings"
    VIEW_BOOKINGS = "view_bookings"
    CREATE_BOOKINGS = "create_bookings"
    EDIT_BOOKINGS = "edit_bookings"
    DELETE_BOOKINGS = "delete_bookings"
    PRINT_BOOKINGS = "print_bookings"


class DocumentType(str, Enum):
    INVOICE = "invoice"
    RECEIPT = "receipt"
    PAYMENT_VOUCHER = "payment_voucher"
    STATEMENT_OF_PAYMENT = "statement_of_payment"


class DocumentStatus(str, Enum):
    DRAFT = "draft"
    ISSUED = "issued"
    PAID = "paid"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BookingStatus(str, Enum):
    DRAFT = "draft"
    PLANNING = "planning"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


DOCUMENT_TYPE_LABELS = {
    DocumentType.INVOICE: "Invoice",
    DocumentType.RECEIPT: "Receipt",
    DocumentType.PAYMENT_VOUCHER: "Payment Voucher",
    DocumentType.STATEMENT_OF_PAYMENT: "Statement of Payment",
}


# ============================================
# ACTOR
# ============================================
class Actor(BaseModel):
    """Caller identity passed explicitly into every policy check."""
    id: str
    role: str  # kept as str: an unrecognised role must resolve to no permissions
    name: Optional[str] = None
    username: Optional[str] = None


# ============================================
# DOCUMENT / BOOKING REFERENCES
# ============================================
class DocumentRef(BaseModel):
    id: str
    document_type: str
    document_number: Optional[str] = None
    status: str = DocumentStatus.DRAFT.value
    deleted_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    linked_voucher_id: Optional[str] = None

    @classmethod
    def from_mongo(cls, doc: Dict[str, Any]) -> "DocumentRef":
        return cls(
            id=str(doc["_id"]),
            document_type=doc["document_type"],
            document_number=doc.get("document_number"),
            status=doc.get("status", DocumentStatus.DRAFT.value),
            deleted_at=doc.get("deleted_at"),
            updated_at=doc.get("updated_at"),
            linked_voucher_id=doc.get("linked_voucher_id")
        )


class BookingRef(BaseModel):
    id: str
    booking_number: Optional[str] = None
    guest_name: Optional[str] = None
    status: str = BookingStatus.DRAFT.value
    deleted_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_mongo(cls, doc: Dict[str, Any]) -> "BookingRef":
        return cls(
            id=str(doc["_id"]),
            booking_number=doc.get("booking_number"),
            guest_name=doc.get("guest_name"),
            status=doc.get("status", BookingStatus.DRAFT.value),
            deleted_at=doc.get("deleted_at"),
            updated_at=doc.get("updated_at")
        )


# ============================================
# DOCUMENT REQUESTS
# ============================================
class DocumentCreate(BaseModel):
    document_type: DocumentType
    amount: float = 0
    currency: str = "MYR"
    notes: Optional[str] = None
    linked_voucher_id: Optional[str] = None  # statement_of_payment only
    details: Dict[str, Any] = Field(default_factory=dict)  # type-specific fields


class DocumentUpdate(BaseModel):
    expected_updated_at: Optional[datetime] = None
    status: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    notes: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class StatusChangeRequest(BaseModel):
    status: str
    skip_validation: bool = False


# ============================================
# BOOKING REQUESTS
# ============================================
class BookingCreate(BaseModel):
    guest_name: str
    pax: int = 1
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    notes: Optional[str] = None


class BookingUpdate(BaseModel):
    expected_updated_at: Optional[datetime] = None
    guest_name: Optional[str] = None
    pax: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: Optional[str] = None
    notes: Optional[str] = None


# ============================================
# RESULTS
# ============================================
class StatusChangeResult(BaseModel):
    """Outcome of a status change. Failures are returned, not raised."""
    success: bool
    entity: str
    entity_id: str
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    allowed_transitions: List[str] = Field(default_factory=list)


class DeletionCheck(BaseModel):
    can_delete: bool
    reason: Optional[str] = None
    blocking_document_number: Optional[str] = None


class DocumentPermissions(BaseModel):
    document_id: str
    can_edit: bool
    can_delete: bool
    edit_restriction: Optional[str] = None
    delete_restriction: Optional[str] = None
