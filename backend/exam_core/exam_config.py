"""
Exam configuration: admin-managed exam slots and fee tiers.

A single document with is_active=True is authoritative. When none exists
the default configuration is inserted on first read.
"""

from motor.motor_asyncio import AsyncIOMotorDatabase
from datetime import datetime
from typing import Dict, Any, List
import copy
import logging

from .errors import ValidationError
from .registration_id import ExamType

logger = logging.getLogger(__name__)


DEFAULT_EXAM_CONFIG = {
    "exam_dates": [
        {
            "id": "slot-1",
            "value": "2026-01-11",
            "label": "Slot 1",
            "time": "12:00 PM",
            "reporting_time": "11:30 AM",
            "enabled": True,
            "max_capacity": None
        },
        {
            "id": "slot-2",
            "value": "2026-01-18",
            "label": "Slot 2",
            "time": "12:00 PM",
            "reporting_time": "11:30 AM",
            "enabled": True,
            "max_capacity": None
        }
    ],
    "pricing": {
        "foundation": 200,
        "regular": 500
    },
    "is_active": True
}


class ExamConfigService:
    """Read and update the active exam configuration."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db.exam_config

    async def get_active(self) -> Dict[str, Any]:
        config = await self.collection.find_one({"is_active": True})
        if config:
            return config

        default = copy.deepcopy(DEFAULT_EXAM_CONFIG)
        default.pop("is_active")
        now = datetime.utcnow()
        default["created_at"] = now
        default["updated_at"] = now
        # Upsert keyed on is_active so concurrent first reads converge on one document
        await self.collection.update_one(
            {"is_active": True},
            {"$setOnInsert": default},
            upsert=True
        )
        logger.info("Created default exam configuration")
        return await self.collection.find_one({"is_active": True})

    async def fee_for(self, exam_type) -> int:
        exam_type = ExamType(exam_type)
        config = await self.get_active()
        return config["pricing"][exam_type.value]

    async def enabled_exam_dates(self) -> List[Dict[str, Any]]:
        config = await self.get_active()
        return [d for d in config.get("exam_dates", []) if d.get("enabled", True)]

    async def update(
        self,
        exam_dates: List[Dict[str, Any]],
        pricing: Dict[str, Any]
    ) -> Dict[str, Any]:
        self._validate(exam_dates, pricing)

        current = await self.get_active()
        await self.collection.update_one(
            {"_id": current["_id"]},
            {
                "$set": {
                    "exam_dates": exam_dates,
                    "pricing": {
                        "foundation": pricing["foundation"],
                        "regular": pricing["regular"]
                    },
                    "updated_at": datetime.utcnow()
                }
            }
        )
        logger.info(f"Exam configuration updated: {len(exam_dates)} dates, pricing={pricing}")
        return await self.collection.find_one({"_id": current["_id"]})

    @staticmethod
    def _validate(exam_dates, pricing):
        if not isinstance(exam_dates, list) or not exam_dates:
            raise ValidationError("examDates must be a non-empty list", ["exam_dates"])

        ids = [d.get("id") for d in exam_dates]
        if any(not i for i in ids) or len(set(ids)) != len(ids):
            raise ValidationError("Every exam date needs a unique id", ["exam_dates"])
        if any(not d.get("value") for d in exam_dates):
            raise ValidationError("Every exam date needs a value", ["exam_dates"])

        if not isinstance(pricing, dict):
            raise ValidationError("Invalid pricing format", ["pricing"])
        for tier in (ExamType.FOUNDATION.value, ExamType.REGULAR.value):
            price = pricing.get(tier)
            if isinstance(price, bool) or not isinstance(price, (int, float)) or price < 0:
                raise ValidationError(f"pricing.{tier} must be a non-negative number", ["pricing"])
