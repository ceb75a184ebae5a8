"""
Active statement link migration
"""
import importlib.util
from pathlib import Path

import pytest
from bson import ObjectId

from core.concurrency_guard import utc_now

MIGRATION_PATH = Path(__file__).resolve().parents[1] / "migrations" / "001_active_sop_link.py"


def load_migration():
    module_spec = importlib.util.spec_from_file_location("active_sop_link_migration", MIGRATION_PATH)
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)
    return module


migration = load_migration()


def statement(number, voucher_id, deleted=False):
    now = utc_now()
    return {
        "document_type": "statement_of_payment",
        "document_number": number,
        "linked_voucher_id": voucher_id,
        "deleted_at": now if deleted else None,
        "created_at": now,
        "updated_at": now
    }


@pytest.mark.asyncio
async def test_upgrade_backfills_active_statements(db):
    await db.documents.insert_many([
        statement("SOP-2025-0001", "v1", deleted=True),
        statement("SOP-2025-0002", "v1"),
        statement("SOP-2025-0003", "v2"),
    ])

    result = await migration.upgrade(db)

    assert result["status"] == "success"
    assert result["backfilled"] == 2

    tombstone = await db.documents.find_one({"document_number": "SOP-2025-0001"})
    active = await db.documents.find_one({"document_number": "SOP-2025-0002"})
    assert "active_voucher_link" not in tombstone
    assert active["active_voucher_link"] == "v1"

    info = await db.documents.index_information()
    assert migration.ACTIVE_LINK_INDEX in info

    record = await db.migrations.find_one({"migration_name": migration.MIGRATION_NAME})
    assert record["status"] == "applied"


@pytest.mark.asyncio
async def test_upgrade_blocked_by_duplicate_active_links(db):
    await db.documents.insert_many([
        statement("SOP-2025-0001", "v1"),
        statement("SOP-2025-0002", "v1"),
    ])

    result = await migration.upgrade(db)

    assert result["status"] == "blocked"
    assert result["duplicates"][0]["voucher_id"] == "v1"
    assert await db.migrations.count_documents({}) == 0


@pytest.mark.asyncio
async def test_downgrade(db):
    await db.documents.insert_one(statement("SOP-2025-0001", "v1"))
    await migration.upgrade(db)

    result = await migration.downgrade(db)

    assert result["status"] == "rolled_back"
    doc = await db.documents.find_one({"document_number": "SOP-2025-0001"})
    assert "active_voucher_link" not in doc
    assert migration.ACTIVE_LINK_INDEX not in await db.documents.index_information()


@pytest.mark.asyncio
async def test_upgrade_blocked_by_differently_spelled_voucher_ids(db):
    voucher_id = str(ObjectId())
    await db.documents.insert_many([
        statement("SOP-2025-0001", voucher_id),
        statement("SOP-2025-0002", voucher_id.upper()),
    ])

    result = await migration.upgrade(db)

    assert result["status"] == "blocked"
    assert result["duplicates"][0]["voucher_id"] == voucher_id
    assert sorted(result["duplicates"][0]["statements"]) == ["SOP-2025-0001", "SOP-2025-0002"]


@pytest.mark.asyncio
async def test_upgrade_canonicalises_voucher_ids(db):
    voucher_id = str(ObjectId())
    await db.documents.insert_many([
        statement("SOP-2025-0001", voucher_id.upper(), deleted=True),
        statement("SOP-2025-0002", voucher_id.upper()),
    ])

    result = await migration.upgrade(db)

    assert result["status"] == "success"
    active = await db.documents.find_one({"document_number": "SOP-2025-0002"})
    assert active["linked_voucher_id"] == voucher_id
    assert active["active_voucher_link"] == voucher_id

    tombstone = await db.documents.find_one({"document_number": "SOP-2025-0001"})
    assert tombstone["linked_voucher_id"] == voucher_id.upper()
