"""
PAYMENT API ROUTES

All three payment triggers route through PaymentReconciliationCoordinator:
- /verify     client checkout callback (public, signed)
- /webhook    gateway webhook (public, signed over raw body)
- /reconcile  manual gateway query (admin)
"""

from fastapi import APIRouter, Depends, Request
import logging

import config
from auth import get_current_admin
from dependencies import Services, get_services
from models import CreateOrderRequest, PaymentVerifyRequest, ReconcileRequest

logger = logging.getLogger(__name__)

payment_router = APIRouter(prefix="/api/payment", tags=["Payments"])

WEBHOOK_SIGNATURE_HEADER = "x-razorpay-signature"


@payment_router.post("/create-order")
async def create_order(
    order_request: CreateOrderRequest,
    services: Services = Depends(get_services)
):
    """Open a gateway order for the registration's stored fee"""
    order = await services.coordinator.create_order(
        order_request.registration_key,
        currency=config.PAYMENT_CURRENCY
    )
    return {"success": True, "key_id": services.gateway.key_id, **order}


@payment_router.post("/verify")
async def verify_payment(
    verify_request: PaymentVerifyRequest,
    services: Services = Depends(get_services)
):
    """Client callback after in-browser checkout"""
    result = await services.coordinator.handle_client_callback(
        registration_key=verify_request.registration_key,
        order_id=verify_request.razorpay_order_id,
        payment_id=verify_request.razorpay_payment_id,
        signature=verify_request.razorpay_signature
    )
    return {"success": True, **result.to_dict()}


@payment_router.post("/webhook")
async def payment_webhook(
    request: Request,
    services: Services = Depends(get_services)
):
    """
    Gateway webhook. The signature covers the exact raw body, so the
    body is read as bytes before any parsing.
    """
    raw_body = await request.body()
    signature = request.headers.get(WEBHOOK_SIGNATURE_HEADER)

    result = await services.coordinator.handle_webhook(raw_body, signature)
    return {"success": True, **result.to_dict()}


@payment_router.post("/reconcile")
async def reconcile_payment(
    reconcile_request: ReconcileRequest,
    principal: dict = Depends(get_current_admin),
    services: Services = Depends(get_services)
):
    """Admin-triggered reconciliation against the gateway's payment list"""
    logger.info(
        f"[RECONCILE] Manual reconcile by {principal['user_id']}: "
        f"registration={reconcile_request.registration_key} order={reconcile_request.order_id}"
    )
    result = await services.coordinator.reconcile(
        registration_key=reconcile_request.registration_key,
        order_id=reconcile_request.order_id
    )
    return {"success": True, **result.to_dict()}
