"""
Lifecycle Governance Core Modules
"""
from .errors import (
    ErrorCodes,
    GovernanceError,
    PermissionDeniedError,
    InvalidTransitionError,
    ConcurrentModificationError,
    ActiveLinkConflictError,
    ReferentialIntegrityViolationError,
    NotFoundError
)

from .state_machine import (
    TransitionTable,
    StateMachineRegistry,
    state_machine_registry,
    is_valid_transition,
    allowed_next
)

from .concurrency_guard import ConcurrencyGuard

from .atomic_numbering import AtomicDocumentNumbering

from .link_integrity import LinkIntegrityManager

from .deletion_guard import DeletionGuard

from .state_machine_wiring import StatusTransitionValidator

__all__ = [
    # Errors
    'ErrorCodes',
    'GovernanceError',
    'PermissionDeniedError',
    'InvalidTransitionError',
    'ConcurrentModificationError',
    'ActiveLinkConflictError',
    'ReferentialIntegrityViolationError',
    'NotFoundError',
    # Status transitions
    'TransitionTable',
    'StateMachineRegistry',
    'state_machine_registry',
    'is_valid_transition',
    'allowed_next',
    'StatusTransitionValidator',
    # Concurrency
    'ConcurrencyGuard',
    # Numbering
    'AtomicDocumentNumbering',
    # Link integrity / deletion
    'LinkIntegrityManager',
    'DeletionGuard',
]
