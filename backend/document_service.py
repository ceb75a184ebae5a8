from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError
from typing import Optional, Dict, Any
import logging

from models import (
    Actor, DocumentCreate, DocumentUpdate, DocumentRef, DocumentPermissions,
    Permission, StatusChangeResult
)
from permissions import (
    PermissionChecker, can_edit_document, can_delete_document,
    get_edit_restriction_message, get_delete_restriction_message
)
from activity_log_service import ActivityLogService
from core.atomic_numbering import AtomicDocumentNumbering
from core.concurrency_guard import ConcurrencyGuard, utc_now, to_object_id
from core.deletion_guard import DeletionGuard
from core.errors import NotFoundError, ConcurrentModificationError
from core.link_integrity import (
    LinkIntegrityManager, STATEMENT_OF_PAYMENT, PAYMENT_VOUCHER,
    tombstone_update, restore_update
)
from core.state_machine_wiring import StatusTransitionValidator

logger = logging.getLogger(__name__)


class DocumentService:
    """
    Governed document lifecycle.

    Every mutation runs: permission check -> lifecycle rule -> conditional
    write -> activity log. Governance failures raise core.errors types;
    status changes report theirs through StatusChangeResult.
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        activity_log: Optional[ActivityLogService] = None,
        numbering: Optional[AtomicDocumentNumbering] = None
    ):
        self.db = db
        self.collection = db.documents
        self.activity_log = activity_log or ActivityLogService(db)
        self.numbering = numbering or AtomicDocumentNumbering(db)
        self.link_manager = LinkIntegrityManager(db, self.numbering)
        self.deletion_guard = DeletionGuard(db, self.link_manager)
        self.concurrency = ConcurrencyGuard(db, "document")
        self.status_validator = StatusTransitionValidator(db, "document", self.activity_log)
        self.permission_checker = PermissionChecker()

    async def _find(self, document_id: str, active_only: bool = True, session=None) -> Dict[str, Any]:
        oid = to_object_id(document_id)
        document = None
        if oid is not None:
            query: Dict[str, Any] = {"_id": oid}
            if active_only:
                query["deleted_at"] = None
            document = await self.collection.find_one(query, session=session)

        if document is None:
            raise NotFoundError("document", str(document_id))
        return document

    # =========================================================================
    # READ
    # =========================================================================

    async def get_document(self, document_id: str, session=None) -> Dict[str, Any]:
        return await self._find(document_id, session=session)

    async def get_permissions(self, actor: Actor, document_id: str) -> DocumentPermissions:
        self.permission_checker.require(actor, Permission.VIEW_DOCUMENTS)
        document = await self._find(document_id)
        ref = DocumentRef.from_mongo(document)
        return DocumentPermissions(
            document_id=ref.id,
            can_edit=can_edit_document(actor, ref),
            can_delete=can_delete_document(actor, ref),
            edit_restriction=get_edit_restriction_message(actor, ref),
            delete_restriction=get_delete_restriction_message(actor, ref)
        )

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_document(self, actor: Actor, data: DocumentCreate, session=None) -> Dict[str, Any]:
        """
        Create a document in draft status.

        Statements of payment must name an active payment voucher and go
        through the link integrity manager; other types may not link.

        Raises:
            PermissionDeniedError, NotFoundError (voucher), ActiveLinkConflictError,
            ValueError for a missing or misplaced voucher link
        """
        document_type = data.document_type.value
        self.permission_checker.check_can_create_document(actor, document_type)

        payload = data.dict(exclude={"document_type", "linked_voucher_id"})

        if document_type == STATEMENT_OF_PAYMENT:
            if not data.linked_voucher_id:
                raise ValueError("A Statement of Payment must be linked to a Payment Voucher")
            document = await self.link_manager.create_statement_for_voucher(
                data.linked_voucher_id,
                payload,
                actor.id,
                session=session
            )
        else:
            if data.linked_voucher_id:
                raise ValueError("Only a Statement of Payment can be linked to a Payment Voucher")

            document_number = await self.numbering.generate_document_number(document_type, session=session)
            now = utc_now()
            document = {
                **payload,
                "document_type": document_type,
                "document_number": document_number,
                "status": "draft",
                "deleted_at": None,
                "created_by": actor.id,
                "created_at": now,
                "updated_at": now
            }
            result = await self.collection.insert_one(document, session=session)
            document["_id"] = result.inserted_id

        logger.info(f"Document created: {document['document_number']} by {actor.id}")
        await self.activity_log.log_document_event("document:created", actor, document)
        return document

    # =========================================================================
    # UPDATE
    # =========================================================================

    async def update_document(
        self,
        actor: Actor,
        document_id: str,
        data: DocumentUpdate,
        session=None
    ) -> Dict[str, Any]:
        """
        Guarded field update.

        Raises:
            NotFoundError, PermissionDeniedError, InvalidTransitionError,
            ConcurrentModificationError
        """
        document = await self._find(document_id, session=session)
        ref = DocumentRef.from_mongo(document)
        self.permission_checker.check_can_edit(actor, ref)

        changes = data.dict(exclude_unset=True, exclude_none=True, exclude={"expected_updated_at"})
        if not changes:
            return document

        metadata: Dict[str, Any] = {"changed_fields": sorted(changes.keys())}
        if "status" in changes:
            self.status_validator.validate(ref.status, changes["status"])
            metadata["previous_status"] = ref.status
            metadata["new_status"] = changes["status"]

        expected = data.expected_updated_at or document.get("updated_at")
        updated = await self.concurrency.guarded_update(ref.id, expected, changes, session=session)

        await self.activity_log.log_document_event("document:updated", actor, updated, metadata)
        return updated

    async def update_document_status(
        self,
        actor: Actor,
        document_id: str,
        status: str,
        skip_validation: bool = False,
        session=None
    ) -> StatusChangeResult:
        """
        Status change. Only permission failures raise; everything else is
        reported in the result.
        """
        self.permission_checker.require(actor, Permission.VIEW_DOCUMENTS)
        self.permission_checker.require(actor, Permission.EDIT_DOCUMENTS)
        if skip_validation:
            self.permission_checker.check_admin_role(actor)

        oid = to_object_id(document_id)
        document = None
        if oid is not None:
            document = await self.collection.find_one({"_id": oid, "deleted_at": None}, session=session)

        if document is not None:
            self.permission_checker.check_can_edit(actor, DocumentRef.from_mongo(document))

        return await self.status_validator.update_status(
            document_id,
            status,
            actor,
            skip_validation=skip_validation,
            session=session
        )

    # =========================================================================
    # SOFT DELETE / RESTORE
    # =========================================================================

    async def soft_delete_document(self, actor: Actor, document_id: str, session=None) -> Dict[str, Any]:
        """
        Soft delete (idempotent). Payment vouchers are re-checked against
        active statements immediately before the write.

        Raises:
            NotFoundError, PermissionDeniedError, ReferentialIntegrityViolationError,
            ConcurrentModificationError
        """
        document = await self._find(document_id, active_only=False, session=session)
        if document.get("deleted_at") is not None:
            return document

        ref = DocumentRef.from_mongo(document)
        self.permission_checker.check_can_delete(actor, ref)

        if ref.document_type == PAYMENT_VOUCHER:
            await self.deletion_guard.assert_can_delete_voucher(ref.id, session=session)

        updated = await self.collection.find_one_and_update(
            {"_id": document["_id"], "deleted_at": None, "updated_at": document.get("updated_at")},
            tombstone_update(document.get("updated_at")),
            return_document=ReturnDocument.AFTER,
            session=session
        )

        if updated is None:
            current = await self._find(ref.id, active_only=False, session=session)
            if current.get("deleted_at") is not None:
                return current
            raise ConcurrentModificationError(
                entity_type="document",
                entity_id=ref.id,
                expected_updated_at=document.get("updated_at"),
                actual_updated_at=current.get("updated_at")
            )

        logger.info(f"Document soft-deleted: {ref.document_number} by {actor.id}")
        await self.activity_log.log_document_event("document:deleted", actor, updated)
        return updated

    async def restore_document(self, actor: Actor, document_id: str, session=None) -> Dict[str, Any]:
        """
        Undo a soft delete. A statement of payment re-claims its voucher's
        active link, so the voucher must still be active and unclaimed.

        Raises:
            NotFoundError, PermissionDeniedError, ActiveLinkConflictError,
            ConcurrentModificationError
        """
        document = await self._find(document_id, active_only=False, session=session)
        if document.get("deleted_at") is None:
            return document

        ref = DocumentRef.from_mongo(document)
        self.permission_checker.check_can_delete(actor, ref)

        voucher_id = None
        if ref.document_type == STATEMENT_OF_PAYMENT and ref.linked_voucher_id:
            voucher_id = ref.linked_voucher_id
            await self.link_manager.get_active_voucher(voucher_id, session=session)
            await self.link_manager.ensure_link_available(
                voucher_id,
                exclude_statement_id=ref.id,
                session=session
            )

        try:
            updated = await self.collection.find_one_and_update(
                {
                    "_id": document["_id"],
                    "deleted_at": {"$ne": None},
                    "updated_at": document.get("updated_at")
                },
                restore_update(document),
                return_document=ReturnDocument.AFTER,
                session=session
            )
        except DuplicateKeyError as e:
            if voucher_id is None:
                raise
            await self.link_manager.map_constraint_violation(
                e,
                voucher_id,
                exclude_statement_id=ref.id,
                session=session
            )

        if updated is None:
            current = await self._find(ref.id, active_only=False, session=session)
            raise ConcurrentModificationError(
                entity_type="document",
                entity_id=ref.id,
                expected_updated_at=document.get("updated_at"),
                actual_updated_at=current.get("updated_at")
            )

        logger.info(f"Document restored: {ref.document_number} by {actor.id}")
        await self.activity_log.log_document_event("document:restored", actor, updated)
        return updated

    async def create_indexes(self):
        await self.numbering.create_unique_constraints()
        await self.link_manager.create_indexes()
        await self.collection.create_index([("document_type", 1), ("deleted_at", 1)])
