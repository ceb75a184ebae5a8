"""
LIFECYCLE GOVERNANCE: STATEMENT OF PAYMENT <-> PAYMENT VOUCHER LINK INTEGRITY

Invariant: for any Payment Voucher V, at most ONE active (not soft-deleted)
Statement of Payment has linked_voucher_id == V, while any number of
soft-deleted statements may still reference V.

Enforcement:
- Application pre-check (find active statement) for a fast, friendly rejection
- Storage constraint: unique sparse index on `active_voucher_link`.
  The field holds the voucher id only while the statement is active and is
  $unset in the same write that soft-deletes it. `linked_voucher_id` is never
  touched, so tombstones keep their original reference for audit.
- A DuplicateKeyError from the constraint maps to the same
  ActiveLinkConflictError as the pre-check.
"""

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError
from datetime import datetime
from typing import Optional, Dict, Any
import logging

from core.atomic_numbering import AtomicDocumentNumbering
from core.concurrency_guard import utc_now, next_version, to_object_id
from core.errors import ActiveLinkConflictError, NotFoundError

logger = logging.getLogger(__name__)

STATEMENT_OF_PAYMENT = "statement_of_payment"
PAYMENT_VOUCHER = "payment_voucher"

ACTIVE_LINK_FIELD = "active_voucher_link"
ACTIVE_LINK_INDEX = "uniq_active_sop_per_voucher"


def canonical_voucher_id(voucher_id: Any) -> str:
    """One spelling per voucher: the lower-case hex of its ObjectId."""
    oid = to_object_id(voucher_id)
    return str(oid) if oid is not None else str(voucher_id)


def tombstone_update(previous_updated_at: Optional[datetime]) -> Dict[str, Any]:
    """Soft-delete update; releases the active link slot in the same write."""
    now = next_version(previous_updated_at)
    return {
        "$set": {"deleted_at": now, "updated_at": now},
        "$unset": {ACTIVE_LINK_FIELD: ""}
    }


def restore_update(document: Dict[str, Any]) -> Dict[str, Any]:
    """Undo a soft delete; statements re-claim their voucher's link slot."""
    fields: Dict[str, Any] = {
        "deleted_at": None,
        "updated_at": next_version(document.get("updated_at"))
    }
    if document.get("document_type") == STATEMENT_OF_PAYMENT and document.get("linked_voucher_id"):
        fields[ACTIVE_LINK_FIELD] = canonical_voucher_id(document["linked_voucher_id"])
    return {"$set": fields}


class LinkIntegrityManager:
    """
    Service maintaining the one-active-statement-per-voucher invariant.
    """

    def __init__(self, db: AsyncIOMotorDatabase, numbering: Optional[AtomicDocumentNumbering] = None):
        self.db = db
        self.collection = db.documents
        self.numbering = numbering or AtomicDocumentNumbering(db)

    async def find_active_statement(
        self,
        voucher_id: str,
        exclude_statement_id: Optional[str] = None,
        session=None
    ) -> Optional[Dict[str, Any]]:
        query: Dict[str, Any] = {
            "document_type": STATEMENT_OF_PAYMENT,
            "linked_voucher_id": canonical_voucher_id(voucher_id),
            "deleted_at": None
        }

        exclude_oid = to_object_id(exclude_statement_id)
        if exclude_oid is not None:
            query["_id"] = {"$ne": exclude_oid}

        return await self.collection.find_one(query, session=session)

    async def can_create_active_link(self, voucher_id: str, session=None) -> bool:
        """True iff no active statement references the voucher."""
        existing = await self.find_active_statement(voucher_id, session=session)
        return existing is None

    async def get_active_voucher(self, voucher_id: str, session=None) -> Dict[str, Any]:
        oid = to_object_id(voucher_id)
        voucher = None
        if oid is not None:
            voucher = await self.collection.find_one(
                {"_id": oid, "document_type": PAYMENT_VOUCHER, "deleted_at": None},
                session=session
            )

        if voucher is None:
            raise NotFoundError(PAYMENT_VOUCHER, str(voucher_id))
        return voucher

    async def ensure_link_available(
        self,
        voucher_id: str,
        exclude_statement_id: Optional[str] = None,
        session=None
    ) -> bool:
        """
        Raises:
            ActiveLinkConflictError if another active statement holds the voucher
        """
        existing = await self.find_active_statement(
            voucher_id,
            exclude_statement_id=exclude_statement_id,
            session=session
        )

        if existing:
            logger.warning(
                f"[LINK_INTEGRITY] Voucher {voucher_id} already linked to active "
                f"statement {existing.get('document_number')}"
            )
            raise ActiveLinkConflictError(
                voucher_id=voucher_id,
                existing_statement_number=existing.get("document_number")
            )

        return True

    async def map_constraint_violation(
        self,
        error: DuplicateKeyError,
        voucher_id: str,
        exclude_statement_id: Optional[str] = None,
        session=None
    ):
        """
        Translate a duplicate-key failure on a statement write.

        Always raises: ActiveLinkConflictError when an active statement now
        holds the voucher, otherwise the original error (some other unique
        index fired).
        """
        await self.ensure_link_available(
            voucher_id,
            exclude_statement_id=exclude_statement_id,
            session=session
        )
        raise error

    async def create_statement_for_voucher(
        self,
        voucher_id: str,
        payload: Dict[str, Any],
        actor_id: str,
        session=None
    ) -> Dict[str, Any]:
        """
        Create a statement of payment linked to a voucher.

        Re-validates the link immediately before the insert; the unique
        index remains the authoritative guard under concurrent creation.

        Raises:
            NotFoundError if the voucher is missing or soft-deleted
            ActiveLinkConflictError if the voucher already has an active statement
        """
        voucher = await self.get_active_voucher(voucher_id, session=session)
        voucher_id = str(voucher["_id"])
        await self.ensure_link_available(voucher_id, session=session)

        document_number = await self.numbering.generate_document_number(
            STATEMENT_OF_PAYMENT,
            session=session
        )

        now = utc_now()
        statement = {
            **payload,
            "document_type": STATEMENT_OF_PAYMENT,
            "document_number": document_number,
            "status": "draft",
            "linked_voucher_id": voucher_id,
            ACTIVE_LINK_FIELD: voucher_id,
            "deleted_at": None,
            "created_by": actor_id,
            "created_at": now,
            "updated_at": now
        }

        try:
            result = await self.collection.insert_one(statement, session=session)
        except DuplicateKeyError as e:
            logger.warning(f"[LINK_INTEGRITY] Constraint rejected statement for voucher {voucher_id}")
            await self.map_constraint_violation(e, voucher_id, session=session)

        statement["_id"] = result.inserted_id
        logger.info(f"[LINK_INTEGRITY] Created {document_number} for voucher {voucher_id}")
        return statement

    async def create_indexes(self):
        """
        Sparse unique index: only documents that carry `active_voucher_link`
        (active statements) are indexed, so tombstones never occupy a slot.
        """
        await self.collection.create_index(
            [(ACTIVE_LINK_FIELD, 1)],
            unique=True,
            sparse=True,
            name=ACTIVE_LINK_INDEX
        )
        await self.collection.create_index(
            [("linked_voucher_id", 1), ("deleted_at", 1)],
            name="idx_statement_linked_voucher"
        )
        logger.info(f"[LINK_INTEGRITY] Ensured index {ACTIVE_LINK_INDEX}")
