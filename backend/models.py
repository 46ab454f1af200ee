from pydantic import BaseModel, Field, EmailStr
from typing import Optional, List, Dict, Any
from datetime import datetime
from bson import ObjectId


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Serialize MongoDB document for JSON response (handles ObjectId, datetime)"""
    if doc is None:
        return None
    result = {}
    for key, value in doc.items():
        if isinstance(value, ObjectId):
            result[key] = str(value)
        elif isinstance(value, datetime):
            result[key] = value.isoformat()
        elif isinstance(value, dict):
            result[key] = serialize_doc(value)
        elif isinstance(value, list):
            result[key] = [
                serialize_doc(item) if isinstance(item, dict)
                else str(item) if isinstance(item, ObjectId)
                else item
                for item in value
            ]
        else:
            result[key] = value
    return result


# Never echoed back over HTTP
PRIVATE_REGISTRATION_FIELDS = ("payment_signature",)


def serialize_registration(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Expose `_id` as `id` and drop private payment fields"""
    if doc is None:
        return None
    result = serialize_doc(doc)
    result["id"] = result.pop("_id", None)
    for field in PRIVATE_REGISTRATION_FIELDS:
        result.pop(field, None)
    return result


# ============================================
# REGISTRATION MODELS
# ============================================
class RegistrationCreate(BaseModel):
    # Required-ness is enforced by RegistrationStore so every caller gets the same error
    student_name: Optional[str] = None
    current_class: Optional[str] = None
    school_name: Optional[str] = None
    parent_mobile: Optional[str] = None
    email: Optional[EmailStr] = None
    exam_date: Optional[str] = None
    exam_type: Optional[str] = None  # foundation, regular
    referral_source: Optional[str] = None
    referral_details: Optional[str] = None


class RegistrationUpdate(BaseModel):
    student_name: Optional[str] = None
    current_class: Optional[str] = None
    school_name: Optional[str] = None
    parent_mobile: Optional[str] = None
    email: Optional[EmailStr] = None
    exam_date: Optional[str] = None
    referral_source: Optional[str] = None
    referral_details: Optional[str] = None
    status: Optional[str] = None  # draft, completed
    payment_status: Optional[str] = None  # pending, paid, failed, waived
    order_id: Optional[str] = None
    payment_id: Optional[str] = None

    class Config:
        # Unknown keys are passed through and dropped by the store's allowlist
        extra = "allow"


class DraftCreatedResponse(BaseModel):
    success: bool = True
    id: str
    registration_id: str
    receipt_no: Optional[str] = None
    registration_amount: Optional[float] = None


# ============================================
# PAYMENT MODELS
# ============================================
class CreateOrderRequest(BaseModel):
    registration_key: str


class PaymentVerifyRequest(BaseModel):
    registration_key: Optional[str] = None
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class ReconcileRequest(BaseModel):
    registration_key: Optional[str] = None
    order_id: Optional[str] = None


# ============================================
# EXAM CONFIGURATION MODELS
# ============================================
class ExamDate(BaseModel):
    id: str
    value: str  # ISO date: "2026-01-11"
    label: str
    time: str
    reporting_time: Optional[str] = None
    enabled: bool = True
    max_capacity: Optional[int] = None


class PricingConfig(BaseModel):
    foundation: float = Field(..., ge=0)
    regular: float = Field(..., ge=0)


class ExamConfigUpdate(BaseModel):
    exam_dates: List[ExamDate]
    pricing: PricingConfig


# ============================================
# ADMIN MODELS
# ============================================
class CounterReset(BaseModel):
    value: int = Field(..., ge=0)
