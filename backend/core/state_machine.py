"""
LIFECYCLE GOVERNANCE: STATUS TRANSITION TABLES

Finite state machines for entity status fields, defined as explicit
allowed-edge tables:
- Identity transitions (status -> same status) are always legal
- Terminal states have an empty outgoing set
- Unknown states have no outgoing edges

Usage:
    table = state_machine_registry.get("booking")
    table.is_valid_transition("draft", "planning")    # True
    table.allowed_next("completed")                   # []
    table.validate("cancelled", "completed")          # raises InvalidTransitionError
"""

from typing import Dict, Iterable, List, Mapping, Tuple
import logging

from core.errors import InvalidTransitionError

logger = logging.getLogger(__name__)


def _value(item) -> str:
    return getattr(item, "value", item)


# =============================================================================
# TRANSITION TABLE
# =============================================================================

class TransitionTable:
    """
    Allowed-edge table for one entity kind.

    Edges are kept in declaration order so allowed_next() yields a stable
    list for user-facing messages.
    """

    def __init__(self, entity_name: str, edges: Mapping[str, Iterable[str]]):
        self.entity_name = entity_name
        self._edges: Dict[str, Tuple[str, ...]] = {
            _value(state): tuple(_value(target) for target in targets)
            for state, targets in edges.items()
        }

        unknown = {
            target
            for targets in self._edges.values()
            for target in targets
            if target not in self._edges
        }
        if unknown:
            raise ValueError(
                f"Transition table for {entity_name} references undeclared states: {sorted(unknown)}"
            )

        logger.debug(f"[STATE_MACHINE] Initialized table for entity: {entity_name}")

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def is_valid_transition(self, current, target) -> bool:
        current, target = _value(current), _value(target)
        if current == target:
            return True
        return target in self._edges.get(current, ())

    def allowed_next(self, current) -> List[str]:
        return list(self._edges.get(_value(current), ()))

    def validate(self, current, target) -> None:
        """Raises InvalidTransitionError if the edge is not in the table."""
        if not self.is_valid_transition(current, target):
            raise InvalidTransitionError(
                entity=self.entity_name,
                from_state=_value(current),
                to_state=_value(target),
                allowed=self.allowed_next(current)
            )

    # =========================================================================
    # INTROSPECTION
    # =========================================================================

    def get_states(self) -> List[str]:
        return list(self._edges.keys())

    def is_known_state(self, state) -> bool:
        return _value(state) in self._edges

    def is_terminal(self, state) -> bool:
        return self.is_known_state(state) and not self._edges[_value(state)]

    def get_graph(self) -> Dict[str, List[str]]:
        return {state: list(targets) for state, targets in self._edges.items()}

    def __repr__(self):
        edge_count = sum(len(targets) for targets in self._edges.values())
        return f"TransitionTable({self.entity_name}, states={len(self._edges)}, edges={edge_count})"


# =============================================================================
# ENTITY TABLES
# =============================================================================

BOOKING_TRANSITIONS = {
    "draft": ["planning", "cancelled"],
    "planning": ["confirmed", "cancelled"],
    "confirmed": ["in_progress", "cancelled"],
    "in_progress": ["completed", "cancelled"],
    "completed": [],  # terminal
    "cancelled": ["draft"],  # reopen only
}

DOCUMENT_TRANSITIONS = {
    "draft": ["issued", "cancelled"],
    "issued": ["paid", "cancelled"],
    "paid": ["completed", "cancelled"],
    "completed": [],  # terminal
    "cancelled": ["draft"],  # reopen only
}


# =============================================================================
# REGISTRY
# =============================================================================

class StateMachineRegistry:
    """
    Registry of transition tables by entity kind.

    Usage:
        registry = StateMachineRegistry()
        registry.register(TransitionTable("booking", BOOKING_TRANSITIONS))
        table = registry.get("booking")
    """

    def __init__(self):
        self._tables: Dict[str, TransitionTable] = {}

    def register(self, table: TransitionTable) -> None:
        self._tables[table.entity_name] = table
        logger.info(f"[REGISTRY] Registered transition table: {table.entity_name}")

    def get(self, name: str) -> TransitionTable:
        if name not in self._tables:
            raise KeyError(f"Transition table not found: {name}")
        return self._tables[name]

    def has(self, name: str) -> bool:
        return name in self._tables

    def list(self) -> List[str]:
        return list(self._tables.keys())


booking_transitions = TransitionTable("booking", BOOKING_TRANSITIONS)
document_transitions = TransitionTable("document", DOCUMENT_TRANSITIONS)

state_machine_registry = StateMachineRegistry()
state_machine_registry.register(booking_transitions)
state_machine_registry.register(document_transitions)


def is_valid_transition(entity: str, current, target) -> bool:
    return state_machine_registry.get(entity).is_valid_transition(current, target)


def allowed_next(entity: str, current) -> List[str]:
    return state_machine_registry.get(entity).allowed_next(current)
