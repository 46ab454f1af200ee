"""
REGISTRATION API ROUTES

Public:
- Draft creation
- Single registration read (success page / receipt download)
- School-name suggestions

Admin (bearer token):
- List with filters, distinct exam dates
- Allowlisted edits (may complete payment through the shared mark-paid routine)
- Guarded delete
"""

from fastapi import APIRouter, Depends, Query, status
from typing import Optional
import logging

from auth import get_current_admin
from dependencies import Services, get_services
from models import (
    RegistrationCreate, RegistrationUpdate, DraftCreatedResponse,
    serialize_registration
)

logger = logging.getLogger(__name__)

registration_router = APIRouter(prefix="/api/registrations", tags=["Registrations"])
school_router = APIRouter(prefix="/api/schools", tags=["Registrations"])


# ============================================
# PUBLIC ENDPOINTS
# ============================================

@registration_router.post(
    "/draft",
    response_model=DraftCreatedResponse,
    status_code=status.HTTP_201_CREATED
)
async def create_draft(
    registration_data: RegistrationCreate,
    services: Services = Depends(get_services)
):
    """Create a draft registration with a freshly allocated identifier"""
    registration = await services.store.create_draft(registration_data.dict(exclude_none=True))

    return DraftCreatedResponse(
        id=str(registration["_id"]),
        registration_id=registration["registration_id"],
        receipt_no=registration.get("receipt_no"),
        registration_amount=registration.get("registration_amount")
    )


# ============================================
# ADMIN ENDPOINTS
# ============================================

@registration_router.get("/list")
async def list_registrations(
    page: int = 1,
    limit: int = 10,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    current_class: Optional[str] = Query(None, alias="class"),
    exam_date: Optional[str] = None,
    registration_status: Optional[str] = Query(None, alias="status"),
    payment_status: Optional[str] = None,
    search: Optional[str] = None,
    principal: dict = Depends(get_current_admin),
    services: Services = Depends(get_services)
):
    """List registrations with filters, single-field sort and pagination"""
    result = await services.store.list_registrations(
        filters={
            "current_class": current_class,
            "exam_date": exam_date,
            "status": registration_status,
            "payment_status": payment_status,
            "search": search
        },
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit
    )

    return {
        "success": True,
        "data": [serialize_registration(r) for r in result["data"]],
        "pagination": result["pagination"]
    }


@registration_router.get("/exam-dates")
async def get_exam_dates(
    principal: dict = Depends(get_current_admin),
    services: Services = Depends(get_services)
):
    """Distinct exam dates present on registrations"""
    return {"success": True, "data": await services.store.exam_dates()}


# ============================================
# SINGLE REGISTRATION
# ============================================

@registration_router.get("/{registration_key}")
async def get_registration(
    registration_key: str,
    services: Services = Depends(get_services)
):
    registration = await services.store.get(registration_key)
    return serialize_registration(registration)


@registration_router.patch("/{registration_key}")
async def update_registration(
    registration_key: str,
    update_data: RegistrationUpdate,
    principal: dict = Depends(get_current_admin),
    services: Services = Depends(get_services)
):
    """
    Apply an allowlisted edit.

    Setting status=completed or payment_status=paid runs the same
    identifier recode + receipt assignment as payment reconciliation.
    """
    before = await services.store.get(registration_key)
    after = await services.store.apply_edit(registration_key, update_data.dict(exclude_unset=True))

    await services.audit.log_action(
        module_name="REGISTRATIONS",
        entity_type="REGISTRATION",
        entity_id=str(after["_id"]),
        action_type="UPDATE",
        user_id=principal["user_id"],
        old_value=serialize_registration(before),
        new_value=serialize_registration(after)
    )

    return {"success": True, "data": serialize_registration(after)}


@registration_router.delete("/{registration_key}")
async def delete_registration(
    registration_key: str,
    principal: dict = Depends(get_current_admin),
    services: Services = Depends(get_services)
):
    """Hard-delete a draft registration; paid/completed ones are refused (409)"""
    deleted = await services.store.delete(registration_key)

    await services.audit.log_action(
        module_name="REGISTRATIONS",
        entity_type="REGISTRATION",
        entity_id=str(deleted["_id"]),
        action_type="DELETE",
        user_id=principal["user_id"],
        old_value=serialize_registration(deleted)
    )

    return {"success": True, "message": "Registration deleted"}


# ============================================
# SCHOOL SUGGESTIONS
# ============================================

@school_router.get("/search")
async def search_schools(
    q: Optional[str] = None,
    services: Services = Depends(get_services)
):
    """Autocomplete for the school field; needs at least 2 characters"""
    return {"success": True, "results": await services.store.search_schools(q)}
