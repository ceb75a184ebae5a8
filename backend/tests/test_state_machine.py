"""
Status transition tables and storage-bound status changes
"""
import pytest

from models import BookingCreate, BookingStatus, DocumentStatus
from core.errors import ErrorCodes, InvalidTransitionError
from core.state_machine import (
    TransitionTable, StateMachineRegistry, BOOKING_TRANSITIONS,
    booking_transitions, document_transitions, state_machine_registry,
    is_valid_transition, allowed_next
)
from core.state_machine_wiring import StatusTransitionValidator


class TestBookingTable:

    @pytest.mark.parametrize("state", [s.value for s in BookingStatus])
    def test_identity_always_valid(self, state):
        assert booking_transitions.is_valid_transition(state, state) is True

    def test_forward_path(self):
        path = ["draft", "planning", "confirmed", "in_progress", "completed"]
        for current, target in zip(path, path[1:]):
            assert is_valid_transition("booking", current, target) is True

    def test_cancelled_reopens_to_draft_only(self):
        assert is_valid_transition("booking", "cancelled", "draft") is True
        assert is_valid_transition("booking", "cancelled", "completed") is False
        assert allowed_next("booking", "cancelled") == ["draft"]

    @pytest.mark.parametrize("target", [s.value for s in BookingStatus if s != BookingStatus.COMPLETED])
    def test_completed_is_terminal(self, target):
        assert booking_transitions.is_valid_transition("completed", target) is False
        assert booking_transitions.is_terminal("completed") is True

    def test_no_skipping_stages(self):
        assert booking_transitions.is_valid_transition("draft", "confirmed") is False
        assert booking_transitions.is_valid_transition("planning", "completed") is False

    def test_every_non_terminal_state_can_cancel(self):
        for state in ("draft", "planning", "confirmed", "in_progress"):
            assert "cancelled" in booking_transitions.allowed_next(state)

    def test_unknown_state_has_no_edges(self):
        assert booking_transitions.allowed_next("archived") == []
        assert booking_transitions.is_valid_transition("archived", "draft") is False
        assert booking_transitions.is_known_state("archived") is False

    def test_enum_members_accepted(self):
        assert booking_transitions.is_valid_transition(BookingStatus.DRAFT, BookingStatus.PLANNING) is True


class TestDocumentTable:

    def test_forward_path(self):
        path = ["draft", "issued", "paid", "completed"]
        for current, target in zip(path, path[1:]):
            assert document_transitions.is_valid_transition(current, target) is True

    def test_completed_is_terminal(self):
        for target in ("draft", "issued", "paid", "cancelled"):
            assert document_transitions.is_valid_transition("completed", target) is False

    def test_cancelled_reopens_to_draft(self):
        assert document_transitions.is_valid_transition("cancelled", "draft") is True
        assert document_transitions.is_valid_transition("cancelled", "paid") is False

    def test_identity(self):
        for state in DocumentStatus:
            assert document_transitions.is_valid_transition(state, state) is True


class TestValidateAndRegistry:

    def test_validate_message_lists_allowed(self):
        with pytest.raises(InvalidTransitionError) as exc:
            booking_transitions.validate("draft", "completed")
        assert exc.value.allowed == ["planning", "cancelled"]
        assert exc.value.message == (
            'Cannot change booking status from "draft" to "completed". '
            "Allowed transitions: planning, cancelled"
        )

    def test_validate_message_for_final_state(self):
        with pytest.raises(InvalidTransitionError) as exc:
            booking_transitions.validate("completed", "draft")
        assert "none (final state)" in exc.value.message

    def test_undeclared_target_rejected(self):
        with pytest.raises(ValueError):
            TransitionTable("broken", {"open": ["closed"]})

    def test_registry(self):
        assert set(state_machine_registry.list()) == {"booking", "document"}
        registry = StateMachineRegistry()
        registry.register(TransitionTable("booking", BOOKING_TRANSITIONS))
        assert registry.has("booking") is True
        with pytest.raises(KeyError):
            registry.get("invoice")


class TestUpdateStatus:

    @pytest.mark.asyncio
    async def test_valid_change_is_written_and_logged(self, db, booking_service, activity_log, manager):
        booking = await booking_service.create_booking(manager, BookingCreate(guest_name="Tan family"))
        validator = StatusTransitionValidator(db, "booking", activity_log)

        result = await validator.update_status(str(booking["_id"]), "planning", manager)

        assert result.success is True
        assert result.previous_status == "draft"
        assert result.new_status == "planning"
        assert result.allowed_transitions == ["confirmed", "cancelled"]

        stored = await db.bookings.find_one({"_id": booking["_id"]})
        assert stored["status"] == "planning"
        assert stored["updated_at"] > booking["updated_at"]

        logs = await activity_log.get_activity_logs(activity_type="booking:status_changed")
        assert len(logs) == 1
        assert logs[0]["metadata"]["previous_status"] == "draft"
        assert logs[0]["metadata"]["new_status"] == "planning"

    @pytest.mark.asyncio
    async def test_invalid_change_is_reported_not_raised(self, db, booking_service, manager):
        booking = await booking_service.create_booking(manager, BookingCreate(guest_name="Lim"))
        validator = StatusTransitionValidator(db, "booking")

        result = await validator.update_status(str(booking["_id"]), "completed", manager)

        assert result.success is False
        assert result.error_code == ErrorCodes.INVALID_STATUS_TRANSITION
        assert result.allowed_transitions == ["planning", "cancelled"]
        stored = await db.bookings.find_one({"_id": booking["_id"]})
        assert stored["status"] == "draft"

    @pytest.mark.asyncio
    async def test_missing_entity_reported(self, db, manager):
        validator = StatusTransitionValidator(db, "booking")

        result = await validator.update_status("not-an-id", "planning", manager)
        assert result.success is False
        assert result.error_code == ErrorCodes.NOT_FOUND

        result = await validator.update_status("65a1b2c3d4e5f60718293a4b", "planning", manager)
        assert result.error_code == ErrorCodes.NOT_FOUND

    @pytest.mark.asyncio
    async def test_skip_validation_allows_undeclared_edge(self, db, booking_service, admin):
        booking = await booking_service.create_booking(admin, BookingCreate(guest_name="Wong"))
        validator = StatusTransitionValidator(db, "booking")

        result = await validator.update_status(str(booking["_id"]), "completed", admin, skip_validation=True)
        assert result.success is True
        assert result.new_status == "completed"

    @pytest.mark.asyncio
    async def test_skip_validation_never_allows_unknown_status(self, db, booking_service, admin):
        booking = await booking_service.create_booking(admin, BookingCreate(guest_name="Wong"))
        validator = StatusTransitionValidator(db, "booking")

        result = await validator.update_status(str(booking["_id"]), "archived", admin, skip_validation=True)
        assert result.success is False
        assert result.error_code == ErrorCodes.INVALID_STATUS_TRANSITION

    @pytest.mark.asyncio
    async def test_identity_change_is_a_no_op(self, db, booking_service, manager):
        booking = await booking_service.create_booking(manager, BookingCreate(guest_name="Raj"))
        validator = StatusTransitionValidator(db, "booking")

        result = await validator.update_status(str(booking["_id"]), "draft", manager)
        assert result.success is True
        stored = await db.bookings.find_one({"_id": booking["_id"]})
        assert stored["updated_at"] == booking["updated_at"]
