"""
ADMIN API ROUTES

Every route here requires an authenticated admin principal.

- Exam configuration (dates, fee tiers)
- Legacy backfills for registration ids and receipt numbers
- Counter inspection and recovery
- Reconciliation sweep
- Audit trail
"""

from fastapi import APIRouter, BackgroundTasks, Depends, status
from fastapi.responses import JSONResponse
from typing import Optional
import logging

from auth import get_current_admin
from dependencies import Services, get_services
from exam_core import ValidationError, REGISTRATION_ID_SEQUENCE, RECEIPT_NUMBER_SEQUENCE
from models import ExamConfigUpdate, CounterReset, serialize_doc

logger = logging.getLogger(__name__)

admin_router = APIRouter(
    prefix="/api/admin",
    tags=["Admin"],
    dependencies=[Depends(get_current_admin)]
)

KNOWN_SEQUENCES = (REGISTRATION_ID_SEQUENCE, RECEIPT_NUMBER_SEQUENCE)


def _check_sequence_name(sequence_name: str):
    if sequence_name not in KNOWN_SEQUENCES:
        raise ValidationError(
            f"Unknown sequence {sequence_name}; expected one of {list(KNOWN_SEQUENCES)}",
            ["sequence_name"]
        )


# ============================================
# EXAM CONFIGURATION
# ============================================

@admin_router.get("/config")
async def get_exam_config(services: Services = Depends(get_services)):
    config_doc = await services.exam_config.get_active()
    return {"success": True, "data": serialize_doc(config_doc)}


@admin_router.put("/config")
async def update_exam_config(
    config_data: ExamConfigUpdate,
    principal: dict = Depends(get_current_admin),
    services: Services = Depends(get_services)
):
    before = await services.exam_config.get_active()
    updated = await services.exam_config.update(
        exam_dates=[d.dict() for d in config_data.exam_dates],
        pricing=config_data.pricing.dict()
    )

    await services.audit.log_action(
        module_name="CONFIG",
        entity_type="EXAM_CONFIG",
        entity_id=str(updated["_id"]),
        action_type="UPDATE",
        user_id=principal["user_id"],
        old_value={"pricing": before.get("pricing"), "exam_dates": before.get("exam_dates")},
        new_value={"pricing": updated.get("pricing"), "exam_dates": updated.get("exam_dates")}
    )
    return {"success": True, "data": serialize_doc(updated)}


# ============================================
# LEGACY BACKFILLS
# ============================================

@admin_router.post("/migrate-registration-ids")
async def migrate_registration_ids(
    principal: dict = Depends(get_current_admin),
    services: Services = Depends(get_services)
):
    """Assign identifiers to registrations created before identifiers existed"""
    updated = await services.store.backfill_registration_ids()
    if updated:
        await services.audit.log_action(
            module_name="REGISTRATIONS",
            entity_type="REGISTRATION",
            entity_id=None,
            action_type="BACKFILL_REGISTRATION_IDS",
            user_id=principal["user_id"],
            new_value={"updated": len(updated)}
        )
    return {
        "success": True,
        "message": f"Successfully migrated {len(updated)} registrations",
        "updated": len(updated),
        "registrations": updated
    }


@admin_router.post("/migrate-receipt-numbers")
async def migrate_receipt_numbers(
    principal: dict = Depends(get_current_admin),
    services: Services = Depends(get_services)
):
    """Assign receipt numbers to paid registrations that are missing one"""
    updated = await services.store.backfill_receipt_numbers()
    if updated:
        await services.audit.log_action(
            module_name="REGISTRATIONS",
            entity_type="REGISTRATION",
            entity_id=None,
            action_type="BACKFILL_RECEIPT_NUMBERS",
            user_id=principal["user_id"],
            new_value={"updated": len(updated)}
        )
    return {
        "success": True,
        "message": f"Successfully assigned receipt numbers to {len(updated)} registrations",
        "updated": len(updated),
        "registrations": updated
    }


# ============================================
# COUNTERS
# ============================================

@admin_router.get("/counters/{sequence_name}")
async def get_counter(sequence_name: str, services: Services = Depends(get_services)):
    _check_sequence_name(sequence_name)
    return {
        "success": True,
        "sequence_name": sequence_name,
        "current": await services.allocator.current_value(sequence_name)
    }


@admin_router.put("/counters/{sequence_name}")
async def reset_counter(
    sequence_name: str,
    reset_data: CounterReset,
    principal: dict = Depends(get_current_admin),
    services: Services = Depends(get_services)
):
    """Administrative recovery for a sequence counter"""
    _check_sequence_name(sequence_name)
    result = await services.allocator.reset(sequence_name, reset_data.value)

    await services.audit.log_action(
        module_name="SEQUENCES",
        entity_type="COUNTER",
        entity_id=sequence_name,
        action_type="RESET",
        user_id=principal["user_id"],
        old_value={"sequence": result["previous"]},
        new_value={"sequence": result["current"]}
    )
    return {"success": True, **result}


# ============================================
# RECONCILIATION SWEEP
# ============================================

@admin_router.post("/reconcile-sweep")
async def reconcile_sweep(
    background_tasks: BackgroundTasks,
    older_than_minutes: int = 15,
    limit: int = 200,
    wait: bool = False,
    principal: dict = Depends(get_current_admin),
    services: Services = Depends(get_services)
):
    """
    Reconcile stale pending registrations that already have a gateway order.

    Runs in the background unless wait=true.
    """
    logger.info(f"[SWEEP] Requested by {principal['user_id']}")
    if wait:
        summary = await services.sweep.run_once(older_than_minutes=older_than_minutes, limit=limit)
        return {"success": True, "status": "completed", "summary": summary}

    background_tasks.add_task(
        services.sweep.run_once,
        older_than_minutes=older_than_minutes,
        limit=limit
    )
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content={"success": True, "status": "started"}
    )


# ============================================
# AUDIT TRAIL
# ============================================

@admin_router.get("/audit-logs")
async def get_audit_logs(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    action_type: Optional[str] = None,
    limit: int = 100,
    services: Services = Depends(get_services)
):
    logs = await services.audit.get_audit_logs(
        entity_type=entity_type,
        entity_id=entity_id,
        action_type=action_type,
        limit=min(max(limit, 1), 500)
    )
    return {"success": True, "data": [serialize_doc(log) for log in logs]}
