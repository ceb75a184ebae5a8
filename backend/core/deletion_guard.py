"""
LIFECYCLE GOVERNANCE: DELETION GUARD

Blocks soft deletion of a Payment Voucher while an active Statement of
Payment still references it.

Called twice per delete: by the API for early feedback, and again by the
document service immediately before the soft-delete write. The two steps
are not one transaction; callers holding a Motor session on a replica set
may pass it through to run both inside one.
"""

from motor.motor_asyncio import AsyncIOMotorDatabase
from typing import Optional
import logging

from models import DeletionCheck, DOCUMENT_TYPE_LABELS, DocumentType
from core.concurrency_guard import to_object_id
from core.errors import ReferentialIntegrityViolationError
from core.link_integrity import LinkIntegrityManager, PAYMENT_VOUCHER

logger = logging.getLogger(__name__)


class DeletionGuard:

    def __init__(self, db: AsyncIOMotorDatabase, link_manager: Optional[LinkIntegrityManager] = None):
        self.db = db
        self.link_manager = link_manager or LinkIntegrityManager(db)

    async def check_can_delete_voucher(self, voucher_id: str, session=None) -> DeletionCheck:
        statement = await self.link_manager.find_active_statement(voucher_id, session=session)

        if statement is None:
            return DeletionCheck(can_delete=True)

        number = statement.get("document_number") or ""
        label = DOCUMENT_TYPE_LABELS[DocumentType.STATEMENT_OF_PAYMENT]
        return DeletionCheck(
            can_delete=False,
            reason=(
                f"This Payment Voucher is referenced by {label} {number}. "
                f"Please delete the statement first."
            ),
            blocking_document_number=number
        )

    async def assert_can_delete_voucher(self, voucher_id: str, session=None) -> bool:
        """
        Raises:
            ReferentialIntegrityViolationError if an active statement references the voucher
        """
        check = await self.check_can_delete_voucher(voucher_id, session=session)

        if not check.can_delete:
            logger.warning(
                f"[DELETION_GUARD] Blocked delete of voucher {voucher_id}: "
                f"referenced by {check.blocking_document_number}"
            )
            raise ReferentialIntegrityViolationError(
                voucher_id=voucher_id,
                reason=check.reason,
                blocking_document_number=check.blocking_document_number
            )

        return True

    async def check_can_delete_document(self, document_id: str, session=None) -> DeletionCheck:
        """Deletion check for any active document type."""
        oid = to_object_id(document_id)
        document = None
        if oid is not None:
            document = await self.db.documents.find_one(
                {"_id": oid, "deleted_at": None},
                {"document_type": 1},
                session=session
            )

        if document is None:
            return DeletionCheck(can_delete=False, reason="Document not found")

        if document["document_type"] == PAYMENT_VOUCHER:
            return await self.check_can_delete_voucher(str(oid), session=session)

        return DeletionCheck(can_delete=True)
