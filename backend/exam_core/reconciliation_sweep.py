"""
Scheduled reconciliation sweep.

Registrations that reached the gateway (have an order_id) but never got a
callback or webhook stay in draft/pending. The sweep asks the gateway about
each of them through the same coordinator as the manual trigger.

RULES:
- Must be idempotent; re-running only touches still-unpaid registrations
- A gateway failure on one registration never aborts the sweep
"""

from datetime import datetime, timedelta
from typing import Dict, Any
import logging

from .errors import GatewayUnavailable, GatewayError, NotFound
from .reconciliation import PaymentReconciliationCoordinator, ReconcileStatus, Trigger
from .registration_store import PaymentStatus

logger = logging.getLogger(__name__)


class ReconciliationSweep:

    DEFAULT_AGE_MINUTES = 15
    DEFAULT_BATCH_SIZE = 200

    def __init__(self, coordinator: PaymentReconciliationCoordinator):
        self.coordinator = coordinator
        self.collection = coordinator.store.collection

    async def run_once(
        self,
        older_than_minutes: int = DEFAULT_AGE_MINUTES,
        limit: int = DEFAULT_BATCH_SIZE
    ) -> Dict[str, Any]:
        cutoff = datetime.utcnow() - timedelta(minutes=older_than_minutes)
        cursor = self.collection.find({
            "payment_status": {"$in": [PaymentStatus.PENDING.value, PaymentStatus.FAILED.value]},
            "order_id": {"$exists": True, "$ne": None},
            "updated_at": {"$lt": cutoff}
        }).sort("updated_at", 1).limit(limit)
        candidates = await cursor.to_list(length=limit)

        summary = {"checked": 0, "paid": 0, "pending": 0, "failed": 0}
        logger.info(f"[SWEEP] Started: {len(candidates)} candidates older than {older_than_minutes}m")

        for registration in candidates:
            summary["checked"] += 1
            try:
                result = await self.coordinator.reconcile(
                    registration_key=str(registration["_id"]),
                    trigger=Trigger.SWEEP
                )
            except (GatewayUnavailable, GatewayError) as e:
                summary["failed"] += 1
                logger.warning(f"[SWEEP] Gateway error for {registration['_id']}: {str(e)}")
                continue
            except NotFound:
                # Deleted between the scan and the reconcile
                summary["failed"] += 1
                continue

            if result.status == ReconcileStatus.PAID:
                summary["paid"] += 1
            else:
                summary["pending"] += 1

        logger.info(f"[SWEEP] Completed: {summary}")
        return summary
