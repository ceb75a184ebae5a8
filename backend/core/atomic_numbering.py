"""
ATOMIC DOCUMENT NUMBERING

Provides:
1. findOneAndUpdate + $inc sequence per (prefix, year)
2. Human-readable numbers: PREFIX-YEAR-SEQUENCE (e.g. SOP-2026-0007)
3. Unique document/booking number constraints
"""

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from datetime import datetime
from typing import Optional, Tuple
import logging

logger = logging.getLogger(__name__)

DOCUMENT_PREFIXES = {
    "invoice": "INV",
    "receipt": "RCP",
    "payment_voucher": "PV",
    "statement_of_payment": "SOP",
}

BOOKING_PREFIX = "BK"


class AtomicDocumentNumbering:
    """
    Atomic number generator.

    The $inc happens inside a single findOneAndUpdate, so concurrent
    callers never receive the same sequence.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def get_next_sequence(self, prefix: str, year: int, session=None) -> int:
        """Returns the NEW sequence number after increment."""
        result = await self.db.document_sequences.find_one_and_update(
            {"prefix": prefix, "year": year},
            {
                "$inc": {"current_sequence": 1},
                "$set": {"updated_at": datetime.utcnow()},
                "$setOnInsert": {"created_at": datetime.utcnow()}
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
            session=session
        )
        return result["current_sequence"]

    async def generate_number(self, prefix: str, session=None, year: Optional[int] = None) -> Tuple[str, int]:
        """
        Returns:
            tuple: (number, sequence)
        """
        year = year or datetime.utcnow().year
        sequence = await self.get_next_sequence(prefix, year, session=session)
        number = f"{prefix}-{year}-{sequence:04d}"
        logger.info(f"Generated number: {number}")
        return number, sequence

    async def generate_document_number(self, document_type: str, session=None) -> str:
        prefix = DOCUMENT_PREFIXES.get(getattr(document_type, "value", document_type))
        if prefix is None:
            raise ValueError(f"Unknown document type: {document_type}")
        number, _ = await self.generate_number(prefix, session=session)
        return number

    async def generate_booking_number(self, session=None) -> str:
        number, _ = await self.generate_number(BOOKING_PREFIX, session=session)
        return number

    async def create_unique_constraints(self):
        await self.db.documents.create_index(
            [("document_number", 1)],
            unique=True,
            sparse=True,
            name="unique_document_number"
        )
        await self.db.bookings.create_index(
            [("booking_number", 1)],
            unique=True,
            sparse=True,
            name="unique_booking_number"
        )
        await self.db.document_sequences.create_index(
            [("prefix", 1), ("year", 1)],
            unique=True,
            name="unique_sequence_key"
        )
        logger.info("Created unique document number constraints")
