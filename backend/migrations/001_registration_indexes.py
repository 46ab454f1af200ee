#!/usr/bin/env python3
"""
MIGRATION SCRIPT: Registration uniqueness backstops

Creates:
0. Renames camelCase fields left by the previous system (registrationId, receiptNo, ...)
1. Unique partial indexes (string values only) on registrations.receipt_no and registrations.registration_id
2. Query indexes on order_id, created_at and (status, exam_date)
3. Seeds both sequence counters from the highest values already issued

Run: python migrations/001_registration_indexes.py
"""

import asyncio
import os
import sys
from datetime import datetime

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from motor.motor_asyncio import AsyncIOMotorClient

import config
from exam_core import (
    SequenceAllocator,
    ReceiptNumberGenerator,
    RegistrationStore,
    MalformedIdentifier,
    decode,
    REGISTRATION_ID_SEQUENCE,
    RECEIPT_NUMBER_SEQUENCE,
)
from exam_core.receipt_number import RECEIPT_PREFIX


async def _highest_registration_sequence(db) -> int:
    highest = 0
    async for doc in db.registrations.find(
        {"registration_id": {"$exists": True}}, {"registration_id": 1}
    ):
        try:
            highest = max(highest, decode(doc["registration_id"]).sequence)
        except MalformedIdentifier:
            print(f"• Skipping malformed identifier {doc['registration_id']!r}")
    return highest


async def _highest_receipt_sequence(db) -> int:
    highest = 0
    async for doc in db.registrations.find({"receipt_no": {"$exists": True}}, {"receipt_no": 1}):
        digits = str(doc["receipt_no"])[len(RECEIPT_PREFIX):]
        if digits.isascii() and digits.isdigit():
            highest = max(highest, int(digits))
    return highest


async def run_migration():
    """Execute the registration index migration."""

    print(f"Connecting to: {config.MONGO_URL}")
    print(f"Database: {config.DB_NAME}")

    client = AsyncIOMotorClient(config.MONGO_URL)
    db = client[config.DB_NAME]

    try:
        # Test connection
        await client.admin.command('ping')
        print("✓ Connected to MongoDB")

        allocator = SequenceAllocator(db)
        store = RegistrationStore(db, allocator, ReceiptNumberGenerator(allocator))

        # =====================================================
        # 0. Legacy field names
        # =====================================================
        renamed = await store.rename_legacy_fields()
        print(f"✓ Legacy fields renamed: {renamed or 'none'}")

        # =====================================================
        # 1. Indexes
        # =====================================================
        await store.ensure_indexes()
        print("✓ Registration indexes ensured")

        # =====================================================
        # 2. Counters never trail already-issued values
        # =====================================================
        seeded = {}
        for sequence_name, highest in (
            (REGISTRATION_ID_SEQUENCE, await _highest_registration_sequence(db)),
            (RECEIPT_NUMBER_SEQUENCE, await _highest_receipt_sequence(db)),
        ):
            current = await allocator.current_value(sequence_name)
            if highest > current:
                await allocator.reset(sequence_name, highest)
                print(f"✓ Counter {sequence_name} raised {current} -> {highest}")
            else:
                print(f"• Counter {sequence_name} already at {current}")
            seeded[sequence_name] = max(highest, current)

        # =====================================================
        # 3. Record migration
        # =====================================================
        migration_record = {
            "migration_id": "001_registration_indexes",
            "indexes_created": [
                "unique_receipt_no",
                "unique_registration_id",
                "idx_order_id",
                "idx_created_at",
                "idx_status_exam_date"
            ],
            "counters": seeded,
            "executed_at": datetime.utcnow(),
            "status": "success"
        }

        await db.migrations.update_one(
            {"migration_id": "001_registration_indexes"},
            {"$set": migration_record},
            upsert=True
        )
        print("\n✓ Migration record saved")

        print("\n" + "="*50)
        print("MIGRATION COMPLETE: Registration indexes")
        print("="*50)

        return {"status": "success", "indexes": 5, "counters": seeded}

    except Exception as e:
        print(f"\n✗ Migration failed: {str(e)}")
        raise
    finally:
        client.close()


if __name__ == "__main__":
    result = asyncio.run(run_migration())
    print(f"\nResult: {result}")
