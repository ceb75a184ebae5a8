"""
Role-based permission policy for documents and bookings.

RULES:
1. Every role maps to a fixed set of permissions (static table)
2. Unknown or missing actor has no permissions
3. Operations users are scoped to payment vouchers and bookings
4. Admins bypass status locks; everyone else is frozen out of
   completed/cancelled documents
"""

from typing import Optional, Dict, FrozenSet
import logging

from models import Actor, DocumentRef, Role, Permission, DocumentType, DocumentStatus
from core.errors import PermissionDeniedError

logger = logging.getLogger(__name__)

P = Permission

ROLE_PERMISSIONS: Dict[Role, FrozenSet[Permission]] = {
    Role.VIEWER: frozenset({
        P.VIEW_DOCUMENTS, P.PRINT_DOCUMENTS,
        P.VIEW_BOOKINGS, P.PRINT_BOOKINGS,
    }),
    Role.ACCOUNTANT: frozenset({
        P.VIEW_DOCUMENTS, P.CREATE_DOCUMENTS, P.EDIT_DOCUMENTS, P.PRINT_DOCUMENTS,
        P.MANAGE_ACCOUNTS,
        P.VIEW_BOOKINGS, P.CREATE_BOOKINGS, P.EDIT_BOOKINGS, P.PRINT_BOOKINGS,
    }),
    Role.MANAGER: frozenset({
        P.VIEW_DOCUMENTS, P.CREATE_DOCUMENTS, P.EDIT_DOCUMENTS, P.DELETE_DOCUMENTS,
        P.APPROVE_DOCUMENTS, P.PRINT_DOCUMENTS, P.MANAGE_ACCOUNTS,
        P.VIEW_BOOKINGS, P.CREATE_BOOKINGS, P.EDIT_BOOKINGS, P.DELETE_BOOKINGS,
        P.PRINT_BOOKINGS,
    }),
    Role.ADMIN: frozenset(Permission),
    # Document permissions are limited to payment vouchers by the rules below
    Role.OPERATIONS: frozenset({
        P.VIEW_DOCUMENTS, P.CREATE_DOCUMENTS, P.EDIT_DOCUMENTS, P.PRINT_DOCUMENTS,
        P.VIEW_BOOKINGS, P.CREATE_BOOKINGS, P.EDIT_BOOKINGS, P.PRINT_BOOKINGS,
    }),
}

_missing_roles = [role.value for role in Role if role not in ROLE_PERMISSIONS]
if _missing_roles:
    raise RuntimeError(f"Permission table has no entry for roles: {_missing_roles}")

LOCKED_STATUSES = frozenset({DocumentStatus.COMPLETED.value, DocumentStatus.CANCELLED.value})


def _resolve_role(actor: Optional[Actor]) -> Optional[Role]:
    if actor is None:
        return None
    try:
        return Role(actor.role)
    except ValueError:
        return None


def _value(item) -> str:
    return getattr(item, "value", item)


def permissions_for(actor: Optional[Actor]) -> FrozenSet[Permission]:
    role = _resolve_role(actor)
    if role is None:
        return frozenset()
    return ROLE_PERMISSIONS[role]


def has_permission(actor: Optional[Actor], permission) -> bool:
    """Check whether the actor's role grants a permission."""
    try:
        permission = Permission(_value(permission))
    except ValueError:
        return False
    return permission in permissions_for(actor)


def can_edit_document(actor: Optional[Actor], document: DocumentRef) -> bool:
    """Evaluated in the same order as get_edit_restriction_message."""
    if not has_permission(actor, P.EDIT_DOCUMENTS):
        return False

    role = _resolve_role(actor)

    if role == Role.OPERATIONS and document.document_type != DocumentType.PAYMENT_VOUCHER.value:
        return False

    if role == Role.ADMIN:
        return True

    if document.status in LOCKED_STATUSES:
        return False

    if role == Role.ACCOUNTANT:
        return document.status == DocumentStatus.DRAFT.value

    return True


def get_edit_restriction_message(actor: Optional[Actor], document: DocumentRef) -> Optional[str]:
    """
    Human-readable reason why the actor cannot edit the document.
    Returns None exactly when can_edit_document() is True.
    """
    if actor is None:
        return "You must be logged in to edit documents"

    if not has_permission(actor, P.EDIT_DOCUMENTS):
        return "You do not have permission to edit documents"

    role = _resolve_role(actor)

    if role == Role.OPERATIONS and document.document_type != DocumentType.PAYMENT_VOUCHER.value:
        return "Operations users can only edit payment vouchers"

    if role == Role.ADMIN:
        return None

    if document.status == DocumentStatus.COMPLETED.value:
        return "Completed documents cannot be edited"
    if document.status == DocumentStatus.CANCELLED.value:
        return "Cancelled documents cannot be edited"

    if role == Role.ACCOUNTANT and document.status != DocumentStatus.DRAFT.value:
        return "Accountants can only edit draft documents"

    return None


def can_delete_document(actor: Optional[Actor], document: DocumentRef) -> bool:
    if not has_permission(actor, P.DELETE_DOCUMENTS):
        return False

    role = _resolve_role(actor)

    if role == Role.OPERATIONS:
        return False

    if role == Role.ADMIN:
        return True

    return document.status != DocumentStatus.COMPLETED.value


def get_delete_restriction_message(actor: Optional[Actor], document: DocumentRef) -> Optional[str]:
    """Mirror of can_delete_document() for UI feedback."""
    if actor is None:
        return "You must be logged in to delete documents"

    if not has_permission(actor, P.DELETE_DOCUMENTS):
        return "You do not have permission to delete documents"

    role = _resolve_role(actor)

    if role == Role.OPERATIONS:
        return "Operations users cannot delete documents"

    if role == Role.ADMIN:
        return None

    if document.status == DocumentStatus.COMPLETED.value:
        return "Completed documents cannot be deleted"

    return None


def can_create_document(actor: Optional[Actor], document_type) -> bool:
    if not has_permission(actor, P.CREATE_DOCUMENTS):
        return False
    if _resolve_role(actor) == Role.OPERATIONS:
        return _value(document_type) == DocumentType.PAYMENT_VOUCHER.value
    return True


def can_approve_documents(actor: Optional[Actor]) -> bool:
    return has_permission(actor, P.APPROVE_DOCUMENTS)


def can_print_documents(actor: Optional[Actor]) -> bool:
    return has_permission(actor, P.PRINT_DOCUMENTS)


def is_admin(actor: Optional[Actor]) -> bool:
    return _resolve_role(actor) == Role.ADMIN


class PermissionChecker:
    """
    Permission enforcement for the document and booking services.

    Each check returns True or raises PermissionDeniedError carrying the
    same message the UI would show.
    """

    def require(self, actor: Optional[Actor], permission: Permission) -> bool:
        if not has_permission(actor, permission):
            actor_id = actor.id if actor else None
            logger.warning(f"[PERMISSION] Denied {_value(permission)} for actor {actor_id}")
            raise PermissionDeniedError(
                f"You do not have permission to perform this action ({_value(permission)})",
                actor_id=actor_id,
                action=_value(permission)
            )
        return True

    def check_can_create_document(self, actor: Optional[Actor], document_type) -> bool:
        self.require(actor, P.CREATE_DOCUMENTS)
        if not can_create_document(actor, document_type):
            raise PermissionDeniedError(
                "Operations users can only create payment vouchers",
                actor_id=actor.id,
                action="create_documents"
            )
        return True

    def check_can_edit(self, actor: Optional[Actor], document: DocumentRef) -> bool:
        if not can_edit_document(actor, document):
            message = get_edit_restriction_message(actor, document)
            logger.warning(f"[PERMISSION] Edit denied on document {document.id}: {message}")
            raise PermissionDeniedError(
                message,
                actor_id=actor.id if actor else None,
                action="edit_documents"
            )
        return True

    def check_can_delete(self, actor: Optional[Actor], document: DocumentRef) -> bool:
        if not can_delete_document(actor, document):
            message = get_delete_restriction_message(actor, document)
            logger.warning(f"[PERMISSION] Delete denied on document {document.id}: {message}")
            raise PermissionDeniedError(
                message,
                actor_id=actor.id if actor else None,
                action="delete_documents"
            )
        return True

    def check_admin_role(self, actor: Optional[Actor]) -> bool:
        if not is_admin(actor):
            raise PermissionDeniedError(
                "Admin role required for this operation",
                actor_id=actor.id if actor else None,
                action="admin_override"
            )
        return True
