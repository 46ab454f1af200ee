"""
Payment gateway client (Razorpay-compatible REST API) and signature checks.

Only three gateway capabilities are consumed:
- create an order
- list payment attempts for an order
- signed callbacks (client checkout handler + webhooks)

Timeouts, transport errors and 5xx responses surface as GatewayUnavailable
and are never retried here; the caller or the reconciliation sweep retries.
"""

from typing import Optional, Dict, Any, List
import hashlib
import hmac
import logging

import httpx

from .errors import GatewayError, GatewayUnavailable

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.razorpay.com/v1"
DEFAULT_TIMEOUT_SECONDS = 10.0

CAPTURED = "captured"


def _hmac_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def payment_signature(order_id: str, payment_id: str, secret: str) -> str:
    """HMAC-SHA256 of `order_id|payment_id`, as sent to the checkout handler."""
    return _hmac_hex(secret, f"{order_id}|{payment_id}".encode())


def verify_payment_signature(order_id: str, payment_id: str, signature: Optional[str], secret: str) -> bool:
    if not (order_id and payment_id and signature and secret):
        return False
    return hmac.compare_digest(payment_signature(order_id, payment_id, secret), signature)


def verify_webhook_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    """Webhooks are signed over the exact raw request body."""
    if not (signature and secret):
        return False
    return hmac.compare_digest(_hmac_hex(secret, raw_body), signature)


def find_captured_payment(payments: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    for payment in payments:
        if isinstance(payment, dict) and payment.get("status") == CAPTURED:
            return payment
    return None


class RazorpayGateway:
    """Async client for the gateway's order and payment endpoints."""

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def is_available(self) -> bool:
        return bool(self.key_id and self.key_secret)

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
                transport=self.transport
            ) as client:
                response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"[GATEWAY] Timeout on {method} {path}: {str(e)}")
            raise GatewayUnavailable(f"Payment gateway timed out on {method} {path}") from e
        except httpx.TransportError as e:
            logger.error(f"[GATEWAY] Transport error on {method} {path}: {str(e)}")
            raise GatewayUnavailable(f"Payment gateway unreachable: {str(e)}") from e

        if response.status_code >= 500:
            logger.error(f"[GATEWAY] {method} {path} -> {response.status_code}")
            raise GatewayUnavailable(f"Payment gateway returned {response.status_code}")
        if response.status_code >= 400:
            logger.error(f"[GATEWAY] {method} {path} -> {response.status_code}: {response.text}")
            raise GatewayError(
                f"Payment gateway rejected {method} {path}",
                status_code=response.status_code
            )

        return response.json()

    async def create_order(
        self,
        amount: int,
        currency: str = "INR",
        receipt: Optional[str] = None,
        notes: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Create an order. `amount` is in the smallest currency unit (paise)."""
        payload = {"amount": amount, "currency": currency}
        if receipt:
            payload["receipt"] = receipt
        if notes:
            payload["notes"] = notes

        order = await self._request("POST", "/orders", json=payload)
        logger.info(f"[GATEWAY] Order created: {order.get('id')} amount={amount} {currency}")
        return order

    async def fetch_payments_for_order(self, order_id: str) -> List[Dict[str, Any]]:
        result = await self._request("GET", f"/orders/{order_id}/payments")
        items = result.get("items") if isinstance(result, dict) else None
        return items if isinstance(items, list) else []
