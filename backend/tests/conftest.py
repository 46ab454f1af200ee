"""
Shared fixtures: in-memory MongoDB (mongomock-motor), a scripted payment
gateway on an httpx MockTransport, and an in-process API client.
"""
import os

os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "rzp_webhook_secret")

import hashlib
import hmac
import json
import re

import httpx
import pytest
from mongomock_motor import AsyncMongoMockClient

from auth import create_access_token
from dependencies import Services
from exam_core import RazorpayGateway, payment_gateway

KEY_ID = "rzp_test_key"
KEY_SECRET = "rzp_test_secret"
WEBHOOK_SECRET = "rzp_webhook_secret"
GATEWAY_URL = "https://gateway.test/v1"

REGISTRANT = {
    "student_name": "Asha Kulkarni",
    "current_class": "8",
    "school_name": "St. Mary's High School",
    "parent_mobile": "9876543210",
    "email": "parent@example.com",
    "exam_date": "2026-01-11",
    "exam_type": "foundation",
}


class FakeRazorpay:
    """Scripted stand-in for the gateway's order and payment endpoints"""

    def __init__(self):
        self.orders = {}
        self.payments = {}
        self.requests = []
        self.fail_with = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if isinstance(self.fail_with, Exception):
            raise self.fail_with
        if isinstance(self.fail_with, int):
            return httpx.Response(self.fail_with, json={"error": {"code": "SERVER_ERROR"}})

        if request.method == "POST" and request.url.path.endswith("/orders"):
            body = json.loads(request.content)
            order_id = f"order_{len(self.orders) + 1:06d}"
            order = {"id": order_id, "entity": "order", "status": "created", **body}
            self.orders[order_id] = order
            return httpx.Response(200, json=order)

        match = re.search(r"/orders/([^/]+)/payments$", request.url.path)
        if request.method == "GET" and match:
            items = self.payments.get(match.group(1), [])
            return httpx.Response(200, json={"entity": "collection", "count": len(items), "items": items})

        return httpx.Response(404, json={"error": {"code": "BAD_REQUEST_ERROR"}})

    def add_payment(self, order_id, payment_id, status="captured"):
        self.payments.setdefault(order_id, []).append({
            "id": payment_id,
            "entity": "payment",
            "order_id": order_id,
            "status": status,
        })


def sign_callback(order_id, payment_id):
    return payment_gateway.payment_signature(order_id, payment_id, KEY_SECRET)


def sign_webhook(raw_body: bytes) -> str:
    return hmac.new(WEBHOOK_SECRET.encode(), raw_body, hashlib.sha256).hexdigest()


def captured_event(order_id, payment_id, registration_key=None) -> bytes:
    notes = {"registration_id": registration_key} if registration_key else {}
    return json.dumps({
        "event": "payment.captured",
        "payload": {
            "payment": {
                "entity": {
                    "id": payment_id,
                    "order_id": order_id,
                    "status": "captured",
                    "notes": notes,
                }
            }
        }
    }).encode()


@pytest.fixture
def db():
    client = AsyncMongoMockClient()
    return client["exam_registration_test"]


@pytest.fixture
def fake_gateway():
    return FakeRazorpay()


@pytest.fixture
def gateway(fake_gateway):
    return RazorpayGateway(
        key_id=KEY_ID,
        key_secret=KEY_SECRET,
        base_url=GATEWAY_URL,
        timeout=1,
        transport=httpx.MockTransport(fake_gateway.handler)
    )


@pytest.fixture
def services(db, gateway):
    return Services(
        db,
        gateway=gateway,
        key_secret=KEY_SECRET,
        webhook_secret=WEBHOOK_SECRET,
        preassign_receipt=False
    )


@pytest.fixture
def store(services):
    return services.store


@pytest.fixture
def coordinator(services):
    return services.coordinator


@pytest.fixture
def app(db, gateway):
    from server import create_app
    return create_app(
        db=db,
        gateway=gateway,
        key_secret=KEY_SECRET,
        webhook_secret=WEBHOOK_SECRET,
        preassign_receipt=False
    )


@pytest.fixture
async def client(app):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver"
    ) as http_client:
        yield http_client


@pytest.fixture
def admin_headers():
    token = create_access_token({"user_id": "admin-1", "email": "admin@example.com"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def registrant():
    return dict(REGISTRANT)
