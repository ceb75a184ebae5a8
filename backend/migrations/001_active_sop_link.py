"""
ACTIVE STATEMENT-OF-PAYMENT LINK MIGRATION

Normalises voucher references on active statements of payment to the
lower-case hex form of the voucher's ObjectId, backfills
`active_voucher_link` and creates the constraint:

- uniq_active_sop_per_voucher: unique, sparse on active_voucher_link

Returns status "blocked" without writing anything if existing data already
holds two active statements for one voucher (under any spelling of its id);
those must be resolved by hand before the migration is re-run.
"""

from motor.motor_asyncio import AsyncIOMotorDatabase
from bson import ObjectId
from datetime import datetime
from typing import Any, Dict, List
import logging

logger = logging.getLogger(__name__)

MIGRATION_NAME = "001_active_sop_link"
MIGRATION_VERSION = 1

ACTIVE_LINK_FIELD = "active_voucher_link"
ACTIVE_LINK_INDEX = "uniq_active_sop_per_voucher"

ACTIVE_STATEMENTS = {
    "document_type": "statement_of_payment",
    "deleted_at": None,
    "linked_voucher_id": {"$ne": None}
}


def canonical_voucher_id(voucher_id: Any) -> str:
    if isinstance(voucher_id, ObjectId):
        return str(voucher_id)
    if isinstance(voucher_id, str) and ObjectId.is_valid(voucher_id):
        return str(ObjectId(voucher_id))
    return str(voucher_id)


async def find_duplicate_active_links(db: AsyncIOMotorDatabase) -> List[Dict[str, Any]]:
    """Vouchers referenced by more than one active statement, by canonical id."""
    groups: Dict[str, List[str]] = {}
    cursor = db.documents.find(ACTIVE_STATEMENTS, {"linked_voucher_id": 1, "document_number": 1})
    async for statement in cursor:
        voucher_id = canonical_voucher_id(statement["linked_voucher_id"])
        groups.setdefault(voucher_id, []).append(statement.get("document_number"))

    return [
        {"_id": voucher_id, "count": len(numbers), "statements": numbers}
        for voucher_id, numbers in groups.items()
        if len(numbers) > 1
    ]


async def upgrade(db: AsyncIOMotorDatabase) -> dict:
    duplicates = await find_duplicate_active_links(db)
    if duplicates:
        for dup in duplicates:
            logger.error(
                f"[MIGRATION] Voucher {dup['_id']} has {dup['count']} active statements: "
                f"{dup['statements']}"
            )
        return {
            "migration": MIGRATION_NAME,
            "version": MIGRATION_VERSION,
            "status": "blocked",
            "duplicates": [
                {"voucher_id": dup["_id"], "statements": dup["statements"]}
                for dup in duplicates
            ]
        }

    backfilled = 0
    cursor = db.documents.find(ACTIVE_STATEMENTS)
    async for statement in cursor:
        voucher_id = canonical_voucher_id(statement["linked_voucher_id"])
        await db.documents.update_one(
            {"_id": statement["_id"]},
            {"$set": {"linked_voucher_id": voucher_id, ACTIVE_LINK_FIELD: voucher_id}}
        )
        backfilled += 1
    logger.info(f"[MIGRATION] Backfilled {ACTIVE_LINK_FIELD} on {backfilled} statements")

    # Tombstones must not hold a slot
    cleared = await db.documents.update_many(
        {"deleted_at": {"$ne": None}, ACTIVE_LINK_FIELD: {"$exists": True}},
        {"$unset": {ACTIVE_LINK_FIELD: ""}}
    )

    await db.documents.create_index(
        [(ACTIVE_LINK_FIELD, 1)],
        unique=True,
        sparse=True,
        name=ACTIVE_LINK_INDEX
    )
    logger.info(f"[MIGRATION] Created unique index: {ACTIVE_LINK_INDEX}")

    await db.migrations.update_one(
        {"migration_name": MIGRATION_NAME},
        {
            "$set": {
                "migration_name": MIGRATION_NAME,
                "version": MIGRATION_VERSION,
                "applied_at": datetime.utcnow(),
                "status": "applied"
            }
        },
        upsert=True
    )

    return {
        "migration": MIGRATION_NAME,
        "version": MIGRATION_VERSION,
        "status": "success",
        "backfilled": backfilled,
        "cleared": cleared.modified_count,
        "indexes": [ACTIVE_LINK_INDEX]
    }


async def downgrade(db: AsyncIOMotorDatabase) -> dict:
    await db.documents.drop_index(ACTIVE_LINK_INDEX)
    logger.info(f"[MIGRATION] Dropped index: {ACTIVE_LINK_INDEX}")

    await db.documents.update_many(
        {ACTIVE_LINK_FIELD: {"$exists": True}},
        {"$unset": {ACTIVE_LINK_FIELD: ""}}
    )

    await db.migrations.delete_one({"migration_name": MIGRATION_NAME})

    return {
        "migration": MIGRATION_NAME,
        "status": "rolled_back"
    }


# Schema reference for documentation
SCHEMA = {
    "collection": "documents",
    "fields": {
        "linked_voucher_id": {"type": "string", "optional": True},
        "active_voucher_link": {"type": "string", "optional": True, "present_while": "statement active"}
    },
    "indexes": [
        {"fields": ["active_voucher_link"], "unique": True, "sparse": True}
    ]
}
