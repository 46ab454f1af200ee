"""
REGISTRATION CORE - ATOMIC SEQUENCE ALLOCATION

Provides:
1. Named counters stored one document per sequence in `counters`
2. Atomic increment-and-return via findOneAndUpdate + $inc
3. Bounded retry on transient storage contention
4. Read-only inspection and administrative reset

Counter values are never cached in process memory.
"""

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import AutoReconnect, DuplicateKeyError
from datetime import datetime
import asyncio
import logging

from .errors import AllocationFailed, ValidationError

logger = logging.getLogger(__name__)

REGISTRATION_ID_SEQUENCE = "registrationId"
RECEIPT_NUMBER_SEQUENCE = "receiptNumber"


class SequenceAllocator:
    """
    Atomic sequence generator backed by the `counters` collection.

    A missing counter is created on first use starting from 0, so the
    first issued value is 1. Values may be burned by failed callers but
    are never issued twice.
    """

    MAX_RETRIES = 3
    RETRY_DELAY_MS = 50  # Base delay in milliseconds

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db.counters

    async def next_value(self, sequence_name: str) -> int:
        """
        Increment the named counter and return the NEW value.

        Raises:
            AllocationFailed: if contention persists after MAX_RETRIES
        """
        last_error = None
        for attempt in range(self.MAX_RETRIES):
            try:
                now = datetime.utcnow()
                result = await self.collection.find_one_and_update(
                    {"_id": sequence_name},
                    {
                        "$inc": {"sequence": 1},
                        "$set": {"updated_at": now},
                        "$setOnInsert": {"created_at": now}
                    },
                    upsert=True,
                    return_document=ReturnDocument.AFTER
                )
                sequence = result["sequence"]
                logger.debug(f"[SEQUENCE] {sequence_name} -> {sequence}")
                return sequence

            except (AutoReconnect, DuplicateKeyError) as e:
                # Two first-time upserts on the same _id race into a
                # DuplicateKeyError; the loser simply increments on retry.
                last_error = e
                logger.warning(
                    f"[SEQUENCE] Contention on {sequence_name}, "
                    f"retry {attempt + 1}/{self.MAX_RETRIES}: {str(e)}"
                )
                await asyncio.sleep(self.RETRY_DELAY_MS * (attempt + 1) / 1000)

        logger.error(f"[SEQUENCE] Allocation failed for {sequence_name}: {str(last_error)}")
        raise AllocationFailed(
            f"Failed to allocate {sequence_name} after {self.MAX_RETRIES} attempts"
        )

    async def current_value(self, sequence_name: str) -> int:
        """Return the last issued value without incrementing (0 if absent)."""
        counter = await self.collection.find_one({"_id": sequence_name})
        if not counter:
            return 0
        return counter.get("sequence", 0)

    async def reset(self, sequence_name: str, value: int):
        """
        Administrative recovery: force the counter to `value`.

        The next issued value will be value + 1. Setting a counter below
        an already-issued value re-opens those numbers; unique indexes on
        the consuming collections are the backstop.
        """
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise ValidationError(f"Counter value must be a non-negative integer, got {value!r}")

        previous = await self.current_value(sequence_name)
        now = datetime.utcnow()
        await self.collection.update_one(
            {"_id": sequence_name},
            {
                "$set": {"sequence": value, "updated_at": now},
                "$setOnInsert": {"created_at": now}
            },
            upsert=True
        )
        logger.warning(f"[SEQUENCE] Counter {sequence_name} reset: {previous} -> {value}")
        return {"sequence_name": sequence_name, "previous": previous, "current": value}
