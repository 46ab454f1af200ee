"""
REGISTRATION CORE - PAYMENT RECONCILIATION COORDINATOR

One state machine, three triggers:
1. Client callback  - checkout handler posts order/payment ids + signature
2. Webhook          - gateway posts a signed event body
3. Manual reconcile - admin asks us to query the gateway by order

State machine over (status, payment_status):
    (draft, pending|failed) --captured--> (completed, paid)   terminal
    (draft, pending)        --nothing---> (draft, pending)    "pending"
    (completed, paid)       --any-------> (completed, paid)   idempotent

All triggers end in RegistrationStore.mark_paid, whose conditional write
guarantees exactly one winner and one receipt number per registration.
"""

from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any
from bson import ObjectId
import json
import logging

from .errors import GatewayError, InvalidSignature, NotFound, ValidationError
from .payment_gateway import (
    RazorpayGateway,
    find_captured_payment,
    verify_payment_signature,
    verify_webhook_signature,
)
from .registration_store import RegistrationStore, PaymentStatus

logger = logging.getLogger(__name__)


class ReconcileStatus:
    PAID = "paid"
    PENDING = "pending"
    IGNORED = "ignored"


class Trigger:
    CLIENT_CALLBACK = "CLIENT_CALLBACK"
    WEBHOOK = "WEBHOOK"
    MANUAL = "MANUAL"
    SWEEP = "SWEEP"


CAPTURE_EVENTS = {"payment.captured", "order.paid"}
FAILURE_EVENTS = {"payment.failed"}


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation attempt"""
    status: str
    registration_key: Optional[str] = None
    registration_id: Optional[str] = None
    receipt_no: Optional[str] = None
    payment_id: Optional[str] = None
    order_id: Optional[str] = None
    already_paid: bool = False
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _paid_result(registration: Dict[str, Any], already_paid: bool, message: str) -> ReconcileResult:
    return ReconcileResult(
        status=ReconcileStatus.PAID,
        registration_key=str(registration["_id"]),
        registration_id=registration.get("registration_id"),
        receipt_no=registration.get("receipt_no"),
        payment_id=registration.get("payment_id"),
        order_id=registration.get("order_id"),
        already_paid=already_paid,
        message=message
    )


class PaymentReconciliationCoordinator:
    """
    Drives a registration to (completed, paid) exactly once.

    Holds no per-request state; safe to share across concurrent requests.
    """

    def __init__(
        self,
        store: RegistrationStore,
        gateway: RazorpayGateway,
        key_secret: str,
        webhook_secret: Optional[str] = None,
        audit=None
    ):
        self.store = store
        self.gateway = gateway
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self.audit = audit

    # =========================================================================
    # RESOLUTION
    # =========================================================================

    async def resolve(
        self,
        registration_key: Optional[str] = None,
        order_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Find the registration by primary key, falling back to order reference."""
        if registration_key and ObjectId.is_valid(str(registration_key)):
            return await self.store.get(registration_key)

        registration = await self.store.find_by_order_id(order_id)
        if registration is None:
            raise NotFound(
                f"Registration not found (registration_key={registration_key}, order_id={order_id})"
            )
        return registration

    # =========================================================================
    # ORDER CREATION
    # =========================================================================

    async def create_order(self, registration_key: str, currency: str = "INR") -> Dict[str, Any]:
        """
        Open a gateway order for a registration's stored fee.

        The amount always comes from the registration, never from the client.
        """
        registration = await self.store.get(registration_key)
        if registration.get("payment_status") == PaymentStatus.PAID.value:
            raise ValidationError("Registration is already paid")

        amount = registration.get("registration_amount")
        if not amount:
            raise ValidationError("Registration has no payable amount", ["registration_amount"])
        amount_paise = int(round(amount * 100))

        key = str(registration["_id"])
        order = await self.gateway.create_order(
            amount_paise,
            currency,
            receipt=f"receipt_{key}",
            notes={"registration_id": key}
        )
        order_id = order.get("id")
        if not order_id:
            raise GatewayError("Payment gateway returned no order id")

        if not await self.store.set_order_id(registration, order_id):
            raise ValidationError("Registration was paid while the order was being created")

        return {
            "order_id": order_id,
            "amount": order.get("amount", amount_paise),
            "currency": order.get("currency", currency),
            "registration_id": registration.get("registration_id")
        }

    # =========================================================================
    # TRIGGERS
    # =========================================================================

    async def handle_client_callback(
        self,
        registration_key: Optional[str],
        order_id: str,
        payment_id: str,
        signature: str
    ) -> ReconcileResult:
        """Trigger (a): checkout handler confirmation signed over `order_id|payment_id`."""
        if not verify_payment_signature(order_id, payment_id, signature, self.key_secret):
            await self._reject_signature(Trigger.CLIENT_CALLBACK, registration_key, order_id, payment_id)

        registration = await self.resolve(registration_key, order_id)

        if registration.get("payment_status") == PaymentStatus.PAID.value:
            return _paid_result(registration, True, "Already paid")

        await self._check_order_ownership(registration, order_id, require_stored=True)

        return await self._complete(
            registration, Trigger.CLIENT_CALLBACK,
            payment_id=payment_id, order_id=order_id, signature=signature
        )

    async def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> ReconcileResult:
        """Trigger (b): gateway webhook signed over the raw body."""
        if not self.webhook_secret:
            logger.error("[RECONCILE] Webhook received but no webhook secret is configured")
            raise InvalidSignature("Webhook secret not configured")

        if not verify_webhook_signature(raw_body, signature, self.webhook_secret):
            await self._reject_signature(Trigger.WEBHOOK, None, None, None)

        try:
            payload = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError):
            raise ValidationError("Webhook body is not valid JSON")
        if not isinstance(payload, dict):
            raise ValidationError("Webhook body must be a JSON object")

        event = payload.get("event")
        if event not in CAPTURE_EVENTS and event not in FAILURE_EVENTS:
            logger.info(f"[RECONCILE] Ignoring webhook event {event}")
            return ReconcileResult(status=ReconcileStatus.IGNORED, message=f"Event {event} ignored")

        entities = payload.get("payload") or {}
        payment = (entities.get("payment") or {}).get("entity") or {}
        order = (entities.get("order") or {}).get("entity") or {}

        order_id = payment.get("order_id") or order.get("id")
        payment_id = payment.get("id")

        registration_key = (
            (payment.get("notes") or {}).get("registration_id")
            or (order.get("notes") or {}).get("registration_id")
        )
        receipt = order.get("receipt")
        if not registration_key and isinstance(receipt, str) and receipt.startswith("receipt_"):
            registration_key = receipt[len("receipt_"):]

        try:
            registration = await self.resolve(registration_key, order_id)
        except NotFound:
            logger.error(
                f"[RECONCILE] Webhook {event}: registration not found "
                f"(registration_key={registration_key}, order_id={order_id})"
            )
            raise

        if registration.get("payment_status") == PaymentStatus.PAID.value:
            return _paid_result(registration, True, "Already paid")

        if order_id:
            await self._check_order_owner(registration, order_id)

        if event in FAILURE_EVENTS:
            if await self.store.mark_failed(registration, payment_id):
                logger.info(f"[RECONCILE] {registration['_id']} payment failed ({payment_id})")
            return ReconcileResult(
                status=ReconcileStatus.PENDING,
                registration_key=str(registration["_id"]),
                registration_id=registration.get("registration_id"),
                payment_id=payment_id,
                order_id=order_id,
                message="Payment failed"
            )

        return await self._complete(
            registration, Trigger.WEBHOOK,
            payment_id=payment_id, order_id=order_id
        )

    async def reconcile(
        self,
        registration_key: Optional[str] = None,
        order_id: Optional[str] = None,
        trigger: str = Trigger.MANUAL
    ) -> ReconcileResult:
        """Trigger (c): ask the gateway whether the order has a captured payment."""
        if not registration_key and not order_id:
            raise ValidationError("registration_key or order_id is required")

        registration = await self.resolve(registration_key, order_id)

        if registration.get("payment_status") == PaymentStatus.PAID.value:
            return _paid_result(registration, True, "Already paid")

        if order_id:
            await self._check_order_ownership(registration, order_id)
        order_id = order_id or registration.get("order_id")
        if not order_id:
            raise ValidationError("No order reference found for registration", ["order_id"])

        payments = await self.gateway.fetch_payments_for_order(order_id)
        captured = find_captured_payment(payments)
        if captured is None:
            logger.info(f"[RECONCILE] No captured payment for order {order_id} ({len(payments)} attempts)")
            return ReconcileResult(
                status=ReconcileStatus.PENDING,
                registration_key=str(registration["_id"]),
                registration_id=registration.get("registration_id"),
                order_id=order_id,
                message="No captured payment found"
            )

        return await self._complete(
            registration, trigger,
            payment_id=captured.get("id"), order_id=order_id
        )

    # =========================================================================
    # INTERNALS
    # =========================================================================

    async def _complete(
        self,
        registration: Dict[str, Any],
        trigger: str,
        payment_id: Optional[str] = None,
        order_id: Optional[str] = None,
        signature: Optional[str] = None
    ) -> ReconcileResult:
        current, won = await self.store.mark_paid(
            registration,
            payment_id=payment_id,
            order_id=order_id,
            signature=signature
        )

        if won and self.audit is not None:
            await self.audit.log_action(
                module_name="PAYMENTS",
                entity_type="REGISTRATION",
                entity_id=str(current["_id"]),
                action_type="PAYMENT_RECONCILED",
                user_id=trigger,
                old_value={
                    "status": registration.get("status"),
                    "payment_status": registration.get("payment_status"),
                    "registration_id": registration.get("registration_id")
                },
                new_value={
                    "status": current.get("status"),
                    "payment_status": current.get("payment_status"),
                    "registration_id": current.get("registration_id"),
                    "receipt_no": current.get("receipt_no"),
                    "payment_id": current.get("payment_id"),
                    "order_id": current.get("order_id")
                }
            )

        message = "Payment reconciled successfully" if won else "Already paid"
        return _paid_result(current, not won, message)

    async def _check_order_ownership(
        self,
        registration: Dict[str, Any],
        order_id: str,
        require_stored: bool = False
    ):
        """
        A payment may only credit the registration its order was opened for.

        require_stored: the registration must already carry this order
        (client callbacks, where the caller chooses the registration).
        """
        stored_order = registration.get("order_id")
        if (require_stored and not stored_order) or (stored_order and stored_order != order_id):
            logger.warning(
                f"[SECURITY] Order mismatch for {registration['_id']}: "
                f"stored={stored_order} presented={order_id}"
            )
            raise ValidationError("Payment does not belong to this registration's order", ["order_id"])
        await self._check_order_owner(registration, order_id)

    async def _check_order_owner(self, registration: Dict[str, Any], order_id: str):
        owner = await self.store.find_by_order_id(order_id)
        if owner is not None and owner["_id"] != registration["_id"]:
            logger.warning(
                f"[SECURITY] Order {order_id} belongs to {owner['_id']}, "
                f"not {registration['_id']}"
            )
            raise ValidationError("Order belongs to another registration", ["order_id"])

    async def _reject_signature(self, trigger, entity_id, order_id, payment_id):
        logger.warning(
            f"[SECURITY] Invalid {trigger} signature - possible tampering "
            f"(registration={entity_id}, order={order_id}, payment={payment_id})"
        )
        if self.audit is not None:
            await self.audit.log_action(
                module_name="PAYMENTS",
                entity_type="REGISTRATION",
                entity_id=entity_id,
                action_type="SIGNATURE_REJECTED",
                user_id=trigger,
                new_value={"order_id": order_id, "payment_id": payment_id}
            )
        raise InvalidSignature(f"Invalid {trigger.lower()} signature")
