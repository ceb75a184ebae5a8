"""
Role / status permission policy
"""
import itertools

import pytest

from models import Actor, DocumentRef, Role, Permission, DocumentType, DocumentStatus
from permissions import (
    ROLE_PERMISSIONS, PermissionChecker,
    has_permission, can_edit_document, can_delete_document, can_create_document,
    get_edit_restriction_message, get_delete_restriction_message,
    can_approve_documents, can_print_documents, is_admin
)
from core.errors import PermissionDeniedError


def actor(role):
    return Actor(id=f"user-{role}", role=role)


def doc(document_type=DocumentType.INVOICE, status=DocumentStatus.DRAFT):
    return DocumentRef(id="doc-1", document_type=document_type.value, status=status.value)


ALL_ACTORS = [actor(role.value) for role in Role] + [actor("intern"), None]
ALL_DOCS = [doc(t, s) for t, s in itertools.product(DocumentType, DocumentStatus)]


class TestHasPermission:

    def test_every_role_has_an_entry(self):
        assert set(ROLE_PERMISSIONS) == set(Role)

    def test_admin_has_every_permission(self):
        assert all(has_permission(actor("admin"), p) for p in Permission)

    @pytest.mark.parametrize("role,permission", [
        ("viewer", Permission.EDIT_DOCUMENTS),
        ("viewer", Permission.CREATE_BOOKINGS),
        ("accountant", Permission.DELETE_DOCUMENTS),
        ("accountant", Permission.APPROVE_DOCUMENTS),
        ("operations", Permission.DELETE_DOCUMENTS),
        ("operations", Permission.MANAGE_ACCOUNTS),
        ("manager", Permission.MANAGE_USERS),
        ("manager", Permission.VIEW_AUDIT_LOGS),
    ])
    def test_ungranted_permissions_are_false(self, role, permission):
        assert has_permission(actor(role), permission) is False

    @pytest.mark.parametrize("role", [r.value for r in Role])
    def test_matches_table_exactly(self, role):
        granted = ROLE_PERMISSIONS[Role(role)]
        for permission in Permission:
            assert has_permission(actor(role), permission) == (permission in granted)

    def test_unknown_role_and_missing_actor_have_nothing(self):
        for permission in Permission:
            assert has_permission(actor("intern"), permission) is False
            assert has_permission(None, permission) is False

    def test_accepts_plain_strings(self):
        assert has_permission(actor("manager"), "delete_documents") is True
        assert has_permission(actor("manager"), "launch_rockets") is False


class TestCanEditDocument:

    @pytest.mark.parametrize("status", [DocumentStatus.COMPLETED, DocumentStatus.CANCELLED])
    def test_locked_statuses_frozen_for_non_admins(self, status):
        for role in ("manager", "accountant", "operations", "viewer"):
            assert can_edit_document(actor(role), doc(DocumentType.PAYMENT_VOUCHER, status)) is False

    @pytest.mark.parametrize("status", list(DocumentStatus))
    def test_admin_edits_regardless_of_status(self, status):
        assert can_edit_document(actor("admin"), doc(DocumentType.INVOICE, status)) is True

    @pytest.mark.parametrize("document_type", [
        DocumentType.INVOICE, DocumentType.RECEIPT, DocumentType.STATEMENT_OF_PAYMENT
    ])
    def test_operations_limited_to_payment_vouchers(self, document_type):
        assert can_edit_document(actor("operations"), doc(document_type, DocumentStatus.DRAFT)) is False

    def test_operations_can_edit_open_voucher(self):
        assert can_edit_document(actor("operations"), doc(DocumentType.PAYMENT_VOUCHER, DocumentStatus.ISSUED)) is True

    def test_accountant_only_drafts(self):
        assert can_edit_document(actor("accountant"), doc(status=DocumentStatus.DRAFT)) is True
        assert can_edit_document(actor("accountant"), doc(status=DocumentStatus.ISSUED)) is False
        assert can_edit_document(actor("accountant"), doc(status=DocumentStatus.PAID)) is False

    def test_manager_edits_open_documents(self):
        assert can_edit_document(actor("manager"), doc(status=DocumentStatus.PAID)) is True

    def test_viewer_never_edits(self):
        assert can_edit_document(actor("viewer"), doc()) is False


class TestCanDeleteDocument:

    def test_operations_never_deletes(self):
        assert can_delete_document(actor("operations"), doc(DocumentType.PAYMENT_VOUCHER)) is False

    def test_admin_deletes_completed(self):
        assert can_delete_document(actor("admin"), doc(status=DocumentStatus.COMPLETED)) is True

    def test_manager_cannot_delete_completed(self):
        assert can_delete_document(actor("manager"), doc(status=DocumentStatus.COMPLETED)) is False
        assert can_delete_document(actor("manager"), doc(status=DocumentStatus.CANCELLED)) is True

    def test_accountant_lacks_permission(self):
        assert can_delete_document(actor("accountant"), doc()) is False


class TestRestrictionMessages:

    def test_edit_message_is_none_exactly_when_editable(self):
        for a, d in itertools.product(ALL_ACTORS, ALL_DOCS):
            message = get_edit_restriction_message(a, d)
            assert (message is None) == can_edit_document(a, d), (a, d, message)

    def test_delete_message_is_none_exactly_when_deletable(self):
        for a, d in itertools.product(ALL_ACTORS, ALL_DOCS):
            message = get_delete_restriction_message(a, d)
            assert (message is None) == can_delete_document(a, d), (a, d, message)

    def test_messages(self):
        assert get_edit_restriction_message(None, doc()) == "You must be logged in to edit documents"
        assert get_edit_restriction_message(actor("viewer"), doc()) == \
            "You do not have permission to edit documents"
        assert get_edit_restriction_message(actor("operations"), doc()) == \
            "Operations users can only edit payment vouchers"
        assert get_edit_restriction_message(actor("manager"), doc(status=DocumentStatus.COMPLETED)) == \
            "Completed documents cannot be edited"
        assert get_edit_restriction_message(actor("manager"), doc(status=DocumentStatus.CANCELLED)) == \
            "Cancelled documents cannot be edited"
        assert get_edit_restriction_message(actor("accountant"), doc(status=DocumentStatus.ISSUED)) == \
            "Accountants can only edit draft documents"


class TestOtherCapabilities:

    def test_create_document_scoping(self):
        assert can_create_document(actor("operations"), DocumentType.PAYMENT_VOUCHER) is True
        assert can_create_document(actor("operations"), "invoice") is False
        assert can_create_document(actor("accountant"), DocumentType.STATEMENT_OF_PAYMENT) is True
        assert can_create_document(actor("viewer"), DocumentType.INVOICE) is False

    def test_approve_print_admin(self):
        assert can_approve_documents(actor("manager")) is True
        assert can_approve_documents(actor("accountant")) is False
        assert can_print_documents(actor("viewer")) is True
        assert is_admin(actor("admin")) is True
        assert is_admin(None) is False


class TestPermissionChecker:

    def setup_method(self):
        self.checker = PermissionChecker()

    def test_require_raises_with_action(self):
        with pytest.raises(PermissionDeniedError) as exc:
            self.checker.require(actor("viewer"), Permission.CREATE_DOCUMENTS)
        assert exc.value.action == "create_documents"
        assert exc.value.actor_id == "user-viewer"

    def test_check_can_edit_carries_restriction_message(self):
        with pytest.raises(PermissionDeniedError) as exc:
            self.checker.check_can_edit(actor("accountant"), doc(status=DocumentStatus.PAID))
        assert exc.value.message == "Accountants can only edit draft documents"

    def test_check_can_create_for_operations(self):
        assert self.checker.check_can_create_document(actor("operations"), "payment_voucher") is True
        with pytest.raises(PermissionDeniedError):
            self.checker.check_can_create_document(actor("operations"), "receipt")

    def test_check_admin_role(self):
        assert self.checker.check_admin_role(actor("admin")) is True
        with pytest.raises(PermissionDeniedError):
            self.checker.check_admin_role(actor("manager"))
