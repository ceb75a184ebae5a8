"""
LIFECYCLE GOVERNANCE - ERROR TAXONOMY

Expected, recoverable outcomes of a governed write. Each carries a stable
code so routes and clients can tell the kinds apart without string matching.

Storage/network failures (pymongo.errors.PyMongoError) are NOT wrapped here;
they surface unchanged to the caller.
"""

from typing import Optional, Dict, Any, List, Iterable


class ErrorCodes:
    PERMISSION_DENIED = "PERMISSION_DENIED"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
    CONFLICT = "CONFLICT"
    ACTIVE_LINK_CONFLICT = "ACTIVE_LINK_CONFLICT"
    REFERENTIAL_INTEGRITY = "REFERENTIAL_INTEGRITY"
    NOT_FOUND = "NOT_FOUND"


class GovernanceError(Exception):
    """Base class for all governance outcomes."""
    code = "GOVERNANCE_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


class PermissionDeniedError(GovernanceError):
    """Actor lacks the capability or a role-scoped override forbids the action."""
    code = ErrorCodes.PERMISSION_DENIED

    def __init__(self, message: str, actor_id: Optional[str] = None, action: Optional[str] = None):
        self.actor_id = actor_id
        self.action = action
        super().__init__(message, {"actor_id": actor_id, "action": action})


class InvalidTransitionError(GovernanceError):
    """Requested status change is not a reachable edge."""
    code = ErrorCodes.INVALID_STATUS_TRANSITION

    def __init__(self, entity: str, from_state: str, to_state: str, allowed: Optional[Iterable[str]] = None):
        self.entity = entity
        self.from_state = from_state
        self.to_state = to_state
        self.allowed: List[str] = list(allowed or [])

        allowed_str = ", ".join(self.allowed) if self.allowed else "none (final state)"
        message = (
            f'Cannot change {entity} status from "{from_state}" to "{to_state}". '
            f"Allowed transitions: {allowed_str}"
        )
        super().__init__(message, {
            "entity": entity,
            "from_state": from_state,
            "to_state": to_state,
            "allowed": self.allowed
        })


class ConcurrentModificationError(GovernanceError):
    """Entity changed since the caller last read it."""
    code = ErrorCodes.CONFLICT

    def __init__(self, entity_type: str, entity_id: str, expected_updated_at=None, actual_updated_at=None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_updated_at = expected_updated_at
        self.actual_updated_at = actual_updated_at
        super().__init__(
            f"{entity_type} {entity_id} was modified by another user. Refresh and try again.",
            {
                "entity_type": entity_type,
                "entity_id": entity_id,
                "expected_updated_at": _iso(expected_updated_at),
                "actual_updated_at": _iso(actual_updated_at)
            }
        )


class ActiveLinkConflictError(GovernanceError):
    """A second active Statement of Payment was requested for one voucher."""
    code = ErrorCodes.ACTIVE_LINK_CONFLICT

    def __init__(self, voucher_id: str, existing_statement_number: Optional[str] = None):
        self.voucher_id = voucher_id
        self.existing_statement_number = existing_statement_number
        existing = f" ({existing_statement_number})" if existing_statement_number else ""
        super().__init__(
            f"A Statement of Payment{existing} already exists for this Payment Voucher. "
            f"Only one active statement per voucher is allowed.",
            {"voucher_id": voucher_id, "existing_statement_number": existing_statement_number}
        )


class ReferentialIntegrityViolationError(GovernanceError):
    """Voucher is still referenced by an active Statement of Payment."""
    code = ErrorCodes.REFERENTIAL_INTEGRITY

    def __init__(self, voucher_id: str, reason: str, blocking_document_number: Optional[str] = None):
        self.voucher_id = voucher_id
        self.blocking_document_number = blocking_document_number
        super().__init__(reason, {
            "voucher_id": voucher_id,
            "blocking_document_number": blocking_document_number
        })


class NotFoundError(GovernanceError):
    """Entity does not exist or is tombstoned where an active one was expected."""
    code = ErrorCodes.NOT_FOUND

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} not found", {
            "entity_type": entity_type,
            "entity_id": entity_id
        })


def _iso(value):
    return value.isoformat() if hasattr(value, "isoformat") else value
