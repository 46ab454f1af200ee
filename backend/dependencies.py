"""
Service wiring shared by all routers.

One Services instance is built per application and stored on app.state;
route handlers reach it through `get_services`.
"""
from fastapi import Request
from motor.motor_asyncio import AsyncIOMotorDatabase
from typing import Optional

import config
from audit_service import AuditService
from exam_core import (
    SequenceAllocator,
    ReceiptNumberGenerator,
    RegistrationStore,
    RazorpayGateway,
    PaymentReconciliationCoordinator,
    ReconciliationSweep,
    ExamConfigService,
)


class Services:
    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        gateway: Optional[RazorpayGateway] = None,
        key_secret: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        preassign_receipt: Optional[bool] = None
    ):
        self.db = db
        self.audit = AuditService(db)
        self.allocator = SequenceAllocator(db)
        self.receipts = ReceiptNumberGenerator(self.allocator)
        self.exam_config = ExamConfigService(db)
        self.store = RegistrationStore(
            db,
            self.allocator,
            self.receipts,
            exam_config=self.exam_config,
            preassign_receipt=(
                config.RECEIPT_PREASSIGN if preassign_receipt is None else preassign_receipt
            )
        )
        self.gateway = gateway or RazorpayGateway(
            key_id=config.RAZORPAY_KEY_ID,
            key_secret=config.RAZORPAY_KEY_SECRET,
            base_url=config.RAZORPAY_BASE_URL,
            timeout=config.GATEWAY_TIMEOUT_SECONDS
        )
        self.coordinator = PaymentReconciliationCoordinator(
            self.store,
            self.gateway,
            key_secret=key_secret if key_secret is not None else config.RAZORPAY_KEY_SECRET,
            webhook_secret=(
                webhook_secret if webhook_secret is not None else config.RAZORPAY_WEBHOOK_SECRET
            ),
            audit=self.audit
        )
        self.sweep = ReconciliationSweep(self.coordinator)


def get_services(request: Request) -> Services:
    return request.app.state.services
