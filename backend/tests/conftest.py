"""
Fixtures for Lifecycle Governance Tests
========================================

Provides pytest fixtures for:
- In-memory Motor database (mongomock-motor), fresh per test
- Document / booking services with indexes created
- One actor per role
"""

import sys
from pathlib import Path

import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from models import Actor, DocumentCreate, DocumentType
from activity_log_service import ActivityLogService
from document_service import DocumentService
from booking_service import BookingService
from core.atomic_numbering import AtomicDocumentNumbering


@pytest_asyncio.fixture
async def db():
    client = AsyncMongoMockClient()
    yield client["governance_test"]


@pytest_asyncio.fixture
async def activity_log(db):
    return ActivityLogService(db)


@pytest_asyncio.fixture
async def numbering(db):
    return AtomicDocumentNumbering(db)


@pytest_asyncio.fixture
async def document_service(db, activity_log, numbering):
    service = DocumentService(db, activity_log, numbering)
    await service.create_indexes()
    return service


@pytest_asyncio.fixture
async def booking_service(db, activity_log, numbering):
    service = BookingService(db, activity_log, numbering)
    await service.create_indexes()
    return service


@pytest.fixture
def admin():
    return Actor(id="user-admin", role="admin", name="Aisha Admin", username="admin")


@pytest.fixture
def manager():
    return Actor(id="user-manager", role="manager", name="Mei Manager", username="manager")


@pytest.fixture
def accountant():
    return Actor(id="user-accountant", role="accountant", name="Arif Accountant", username="accountant")


@pytest.fixture
def operations():
    return Actor(id="user-ops", role="operations", name="Omar Ops", username="ops")


@pytest.fixture
def viewer():
    return Actor(id="user-viewer", role="viewer", name="Vera Viewer", username="viewer")


@pytest_asyncio.fixture
async def voucher(document_service, manager):
    return await document_service.create_document(
        manager,
        DocumentCreate(document_type=DocumentType.PAYMENT_VOUCHER, amount=1200, notes="Vendor payout")
    )


@pytest.fixture
def statement_for(document_service, manager):
    """Factory: create an active statement of payment for a voucher."""
    async def _create(voucher_doc, actor=None):
        return await document_service.create_document(
            actor or manager,
            DocumentCreate(
                document_type=DocumentType.STATEMENT_OF_PAYMENT,
                amount=voucher_doc.get("amount", 0),
                linked_voucher_id=str(voucher_doc["_id"])
            )
        )
    return _create
