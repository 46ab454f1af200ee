from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError
from datetime import datetime
from typing import Optional, Dict, Any
import logging

logger = logging.getLogger(__name__)


class AuditService:
    """Service for immutable audit logging"""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db.audit_logs

    async def log_action(
        self,
        module_name: str,
        entity_type: str,
        entity_id: Optional[str],
        action_type: str,
        user_id: str,
        old_value: Optional[Dict[str, Any]] = None,
        new_value: Optional[Dict[str, Any]] = None
    ):
        """
        Log an action to audit trail (INSERT ONLY).

        user_id is the admin principal for admin actions, or the trigger
        name (CLIENT_CALLBACK, WEBHOOK, MANUAL, SWEEP) for payment events.
        """
        try:
            audit_entry = {
                "module_name": module_name,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "action_type": action_type,
                "old_value_json": old_value,
                "new_value_json": new_value,
                "user_id": user_id,
                "timestamp": datetime.utcnow()
            }

            await self.collection.insert_one(audit_entry)
            logger.info(f"Audit log created: {action_type} on {entity_type}:{entity_id} by {user_id}")
        except PyMongoError as e:
            # Don't fail the main operation if audit logging fails
            logger.error(f"Failed to create audit log: {str(e)}")

    async def get_audit_logs(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        action_type: Optional[str] = None,
        limit: int = 100
    ):
        """Retrieve audit logs (READ ONLY)"""
        query = {}

        if entity_type:
            query["entity_type"] = entity_type
        if entity_id:
            query["entity_id"] = entity_id
        if action_type:
            query["action_type"] = action_type

        cursor = self.collection.find(query).sort("timestamp", -1).limit(limit)
        logs = await cursor.to_list(length=limit)

        # Convert ObjectId to string
        for log in logs:
            log["audit_id"] = str(log.pop("_id"))

        return logs
