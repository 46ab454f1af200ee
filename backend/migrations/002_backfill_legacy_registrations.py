#!/usr/bin/env python3
"""
MIGRATION SCRIPT: Legacy registration backfill

Assigns:
0. Current field names to records written with the previous system's camelCase names
1. Registration identifiers to records created before identifiers existed
2. Receipt numbers to paid records that are missing one

Safe to re-run; each step only touches records still missing the field.

Run: python migrations/002_backfill_legacy_registrations.py
"""

import asyncio
import os
import sys
from datetime import datetime

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from motor.motor_asyncio import AsyncIOMotorClient

import config
from exam_core import SequenceAllocator, ReceiptNumberGenerator, RegistrationStore


async def run_migration():
    """Execute the legacy backfill."""

    print(f"Connecting to: {config.MONGO_URL}")
    print(f"Database: {config.DB_NAME}")

    client = AsyncIOMotorClient(config.MONGO_URL)
    db = client[config.DB_NAME]

    try:
        await client.admin.command('ping')
        print("✓ Connected to MongoDB")

        allocator = SequenceAllocator(db)
        store = RegistrationStore(db, allocator, ReceiptNumberGenerator(allocator))

        renamed = await store.rename_legacy_fields()
        print(f"✓ Legacy fields renamed: {renamed or 'none'}")

        ids = await store.backfill_registration_ids()
        print(f"✓ Registration identifiers assigned: {len(ids)}")

        receipts = await store.backfill_receipt_numbers()
        print(f"✓ Receipt numbers assigned: {len(receipts)}")

        await db.migrations.update_one(
            {"migration_id": "002_backfill_legacy_registrations"},
            {"$set": {
                "migration_id": "002_backfill_legacy_registrations",
                "legacy_fields_renamed": renamed,
                "registration_ids_assigned": len(ids),
                "receipt_numbers_assigned": len(receipts),
                "executed_at": datetime.utcnow(),
                "status": "success"
            }},
            upsert=True
        )
        print("\n✓ Migration record saved")

        return {"status": "success", "registration_ids": len(ids), "receipt_numbers": len(receipts)}

    except Exception as e:
        print(f"\n✗ Migration failed: {str(e)}")
        raise
    finally:
        client.close()


if __name__ == "__main__":
    result = asyncio.run(run_migration())
    print(f"\nResult: {result}")
