"""
REGISTRATION CORE - REGISTRATION LIFECYCLE STORE

Authoritative record for a registration:
- Draft creation with an atomically allocated identifier
- Allowlisted admin edits
- The single "mark paid" routine shared by edits and reconciliation
- Guarded delete, filtered listing, legacy backfills

RULES:
- status is forward-only: draft -> completed
- receipt_no, once present, is never rewritten
- State fields are only written through conditional updates
"""

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, OperationFailure
from bson import ObjectId
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List, Tuple
import math
import re
import logging

from .errors import (
    ValidationError, NotFound, MalformedIdentifier,
    RegistrationLocked, ReconciliationFailed
)
from .registration_id import ExamType, RegistrationStatus, encode, recode
from .receipt_number import ReceiptNumberGenerator
from .sequence_allocator import SequenceAllocator, REGISTRATION_ID_SEQUENCE

logger = logging.getLogger(__name__)


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    WAIVED = "waived"


REQUIRED_FIELDS = [
    "student_name",
    "current_class",
    "school_name",
    "parent_mobile",
    "exam_date",
    "exam_type",
]

# Contact/registrant data: editable for the whole lifetime of a registration
REGISTRANT_FIELDS = [
    "student_name",
    "current_class",
    "school_name",
    "parent_mobile",
    "email",
    "exam_date",
    "referral_source",
    "referral_details",
]

# Administrative state fields: editable only until the registration is terminal
STATE_FIELDS = [
    "status",
    "payment_status",
    "order_id",
    "payment_id",
]

EDITABLE_FIELDS = REGISTRANT_FIELDS + STATE_FIELDS

SORTABLE_FIELDS = {
    "created_at",
    "updated_at",
    "student_name",
    "current_class",
    "school_name",
    "exam_date",
    "registration_id",
    "receipt_no",
    "status",
    "payment_status",
}

MAX_PAGE_SIZE = 100

# Field names written by the previous registration system
LEGACY_FIELD_NAMES = {
    "studentName": "student_name",
    "currentClass": "current_class",
    "schoolName": "school_name",
    "parentMobile": "parent_mobile",
    "examDate": "exam_date",
    "examType": "exam_type",
    "referralSource": "referral_source",
    "referralDetails": "referral_details",
    "registrationAmount": "registration_amount",
    "registrationId": "registration_id",
    "receiptNo": "receipt_no",
    "paymentStatus": "payment_status",
    "paymentId": "payment_id",
    "orderId": "order_id",
    "paidAt": "paid_at",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}

MIN_SCHOOL_QUERY_LENGTH = 2
MAX_SCHOOL_SUGGESTIONS = 6


def to_object_id(registration_key) -> ObjectId:
    """Convert a registration key to ObjectId; unknown shapes are NotFound."""
    if isinstance(registration_key, ObjectId):
        return registration_key
    if not registration_key or not ObjectId.is_valid(str(registration_key)):
        raise NotFound(f"Registration not found: {registration_key}")
    return ObjectId(str(registration_key))


def is_terminal(registration: Dict[str, Any]) -> bool:
    return (
        registration.get("payment_status") == PaymentStatus.PAID.value
        or registration.get("status") == RegistrationStatus.COMPLETED.value
    )


def _clean(value):
    return value.strip() if isinstance(value, str) else value


class RegistrationStore:
    """
    Persistence and lifecycle rules for the `registrations` collection.

    Every write that touches status/payment_status is conditional on the
    stored payment_status at the moment of the write.
    """

    MAX_RECEIPT_ATTEMPTS = 10

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        allocator: SequenceAllocator,
        receipts: ReceiptNumberGenerator,
        exam_config=None,
        preassign_receipt: bool = False
    ):
        self.db = db
        self.collection = db.registrations
        self.allocator = allocator
        self.receipts = receipts
        self.exam_config = exam_config
        self.preassign_receipt = preassign_receipt

    # =========================================================================
    # INDEXES
    # =========================================================================

    async def ensure_indexes(self):
        """
        Create the uniqueness backstops and query indexes.

        receipt_no and registration_id are only indexed when they hold a
        string, so records where they are missing or null never collide.
        """
        try:
            await self.collection.create_index(
                [("receipt_no", 1)],
                unique=True,
                partialFilterExpression={"receipt_no": {"$type": "string"}},
                name="unique_receipt_no"
            )
            await self.collection.create_index(
                [("registration_id", 1)],
                unique=True,
                partialFilterExpression={"registration_id": {"$type": "string"}},
                name="unique_registration_id"
            )
            await self.collection.create_index([("order_id", 1)], name="idx_order_id")
            await self.collection.create_index([("created_at", -1)], name="idx_created_at")
            await self.collection.create_index(
                [("status", 1), ("exam_date", 1)],
                name="idx_status_exam_date"
            )
            logger.info("Created registration indexes")
        except OperationFailure as e:
            logger.warning(f"Index creation result: {str(e)}")

    # =========================================================================
    # CREATE / READ
    # =========================================================================

    async def create_draft(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        Persist a new draft registration.

        Allocates `BTNM-<T>-D-<N>`, status=draft, payment_status=pending.

        Raises:
            ValidationError: if required fields are missing or exam_type is unknown
        """
        fields = {k: _clean(v) for k, v in (fields or {}).items()}

        missing = [f for f in REQUIRED_FIELDS if fields.get(f) in (None, "")]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", missing)

        try:
            exam_type = ExamType(fields["exam_type"])
        except ValueError:
            raise ValidationError(f"Unknown exam type: {fields['exam_type']}", ["exam_type"])

        sequence = await self.allocator.next_value(REGISTRATION_ID_SEQUENCE)
        registration_id = encode(exam_type, RegistrationStatus.DRAFT, sequence)

        now = datetime.utcnow()
        registration = {
            k: fields[k] for k in REGISTRANT_FIELDS if fields.get(k) not in (None, "")
        }
        registration.update({
            "registration_id": registration_id,
            "exam_type": exam_type.value,
            "status": RegistrationStatus.DRAFT.value,
            "payment_status": PaymentStatus.PENDING.value,
            "created_at": now,
            "updated_at": now
        })

        if self.exam_config is not None:
            registration["registration_amount"] = await self.exam_config.fee_for(exam_type)

        if self.preassign_receipt:
            registration["receipt_no"] = await self.receipts.assign(registration_id)

        result = await self.collection.insert_one(registration)
        registration["_id"] = result.inserted_id

        logger.info(f"Draft registration created: {registration_id} ({result.inserted_id})")
        return registration

    async def get(self, registration_key) -> Dict[str, Any]:
        registration = await self.collection.find_one({"_id": to_object_id(registration_key)})
        if not registration:
            raise NotFound(f"Registration not found: {registration_key}")
        return registration

    async def find_by_order_id(self, order_id: str) -> Optional[Dict[str, Any]]:
        if not order_id:
            return None
        return await self.collection.find_one({"order_id": order_id})

    # =========================================================================
    # EDIT
    # =========================================================================

    async def apply_edit(self, registration_key, patch: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply an allowlisted partial update.

        Keys outside EDITABLE_FIELDS are dropped. Once terminal, only
        REGISTRANT_FIELDS are applied. A patch moving the registration to
        completed/paid goes through mark_paid.
        """
        registration = await self.get(registration_key)
        patch = {k: _clean(v) for k, v in (patch or {}).items()}

        dropped = sorted(set(patch) - set(EDITABLE_FIELDS))
        if dropped:
            logger.info(f"Ignoring non-editable fields for {registration['_id']}: {dropped}")

        registrant = {k: patch[k] for k in REGISTRANT_FIELDS if k in patch}
        state = {k: patch[k] for k in STATE_FIELDS if k in patch}

        if "status" in state:
            try:
                state["status"] = RegistrationStatus(state["status"]).value
            except ValueError:
                raise ValidationError(f"Unknown status: {state['status']}", ["status"])
        if "payment_status" in state:
            try:
                state["payment_status"] = PaymentStatus(state["payment_status"]).value
            except ValueError:
                raise ValidationError(
                    f"Unknown payment status: {state['payment_status']}", ["payment_status"]
                )

        wants_completed = state.get("status") == RegistrationStatus.COMPLETED.value
        wants_paid = state.get("payment_status") == PaymentStatus.PAID.value
        if wants_completed and "payment_status" in state and not wants_paid:
            raise ValidationError("A completed registration must be paid", ["status", "payment_status"])
        if wants_paid and state.get("status") == RegistrationStatus.DRAFT.value:
            raise ValidationError("A paid registration cannot stay in draft", ["status", "payment_status"])

        if state and is_terminal(registration):
            logger.warning(
                f"Registration {registration['_id']} is terminal; "
                f"dropping state fields {sorted(state)}"
            )
            state = {}

        if registrant:
            registrant["updated_at"] = datetime.utcnow()
            await self.collection.update_one(
                {"_id": registration["_id"]},
                {"$set": registrant}
            )

        if wants_completed or wants_paid:
            if state:
                await self.mark_paid(
                    registration,
                    payment_id=state.get("payment_id"),
                    order_id=state.get("order_id")
                )
        elif state:
            state["updated_at"] = datetime.utcnow()
            result = await self.collection.find_one_and_update(
                {
                    "_id": registration["_id"],
                    "payment_status": {"$ne": PaymentStatus.PAID.value},
                    "status": {"$ne": RegistrationStatus.COMPLETED.value}
                },
                {"$set": state},
                return_document=ReturnDocument.AFTER
            )
            if result is None:
                logger.warning(
                    f"Registration {registration['_id']} became terminal concurrently; "
                    f"state edit not applied"
                )

        return await self.get(registration["_id"])

    async def mark_failed(self, registration: Dict[str, Any], payment_id: Optional[str] = None) -> bool:
        """Record a failed payment attempt on a registration that is not yet paid."""
        update = {
            "payment_status": PaymentStatus.FAILED.value,
            "updated_at": datetime.utcnow()
        }
        if payment_id:
            update["payment_id"] = payment_id
        result = await self.collection.update_one(
            {"_id": registration["_id"], "payment_status": PaymentStatus.PENDING.value},
            {"$set": update}
        )
        return result.modified_count == 1

    # =========================================================================
    # TERMINAL TRANSITION
    # =========================================================================

    async def mark_paid(
        self,
        registration: Dict[str, Any],
        payment_id: Optional[str] = None,
        order_id: Optional[str] = None,
        signature: Optional[str] = None
    ) -> Tuple[Dict[str, Any], bool]:
        """
        Move a registration to (completed, paid) exactly once.

        Returns:
            (current_document, won) - won is False when the registration was
            already paid or another caller's write landed first

        Raises:
            ReconciliationFailed: receipt numbers kept colliding
            NotFound: the registration disappeared mid-transition
        """
        if registration.get("payment_status") == PaymentStatus.PAID.value:
            return registration, False

        identifier = registration.get("registration_id")
        if identifier:
            try:
                identifier = recode(identifier, RegistrationStatus.COMPLETED)
            except MalformedIdentifier as e:
                # Identifier is secondary to payment correctness
                logger.warning(f"[RECONCILE] Keeping identifier as-is: {str(e)}")

        existing_receipt = registration.get("receipt_no")

        for attempt in range(self.MAX_RECEIPT_ATTEMPTS):
            if existing_receipt:
                receipt_no = existing_receipt
            elif attempt == 0:
                receipt_no = await self.receipts.assign(identifier)
            else:
                receipt_no = await self.receipts.generate_independent()

            now = datetime.utcnow()
            update = {
                "status": RegistrationStatus.COMPLETED.value,
                "payment_status": PaymentStatus.PAID.value,
                "receipt_no": receipt_no,
                "paid_at": now,
                "updated_at": now
            }
            if identifier:
                update["registration_id"] = identifier
            if payment_id:
                update["payment_id"] = payment_id
            if order_id:
                update["order_id"] = order_id
            if signature:
                update["payment_signature"] = signature

            query = {
                "_id": registration["_id"],
                "payment_status": {"$ne": PaymentStatus.PAID.value},
                "receipt_no": existing_receipt or None
            }

            try:
                result = await self.collection.find_one_and_update(
                    query,
                    {"$set": update},
                    return_document=ReturnDocument.AFTER
                )
            except DuplicateKeyError as e:
                if existing_receipt:
                    raise ReconciliationFailed(
                        f"Stored receipt {existing_receipt} collides with another registration"
                    ) from e
                logger.warning(
                    f"[RECONCILE] Receipt collision on {receipt_no} for {registration['_id']}, "
                    f"attempt {attempt + 1}/{self.MAX_RECEIPT_ATTEMPTS}"
                )
                continue

            if result is not None:
                logger.info(
                    f"[RECONCILE] {registration['_id']} marked paid: "
                    f"receipt={receipt_no} payment={payment_id} order={order_id}"
                )
                return result, True

            current = await self.collection.find_one({"_id": registration["_id"]})
            if current is None:
                raise NotFound(f"Registration not found: {registration['_id']}")
            if current.get("payment_status") == PaymentStatus.PAID.value:
                logger.info(
                    f"[RECONCILE] {registration['_id']} already paid by a concurrent trigger "
                    f"(receipt={current.get('receipt_no')})"
                )
                return current, False

            # Receipt state moved underneath us without a payment; retry with the fresh view
            existing_receipt = current.get("receipt_no")

        raise ReconciliationFailed(
            f"Could not persist paid state for {registration['_id']} "
            f"after {self.MAX_RECEIPT_ATTEMPTS} attempts"
        )

    async def set_order_id(self, registration: Dict[str, Any], order_id: str) -> bool:
        """Attach a gateway order to a registration that is not yet paid."""
        result = await self.collection.update_one(
            {"_id": registration["_id"], "payment_status": {"$ne": PaymentStatus.PAID.value}},
            {"$set": {"order_id": order_id, "updated_at": datetime.utcnow()}}
        )
        return result.modified_count == 1

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete(self, registration_key) -> Dict[str, Any]:
        """
        Hard-delete a registration that is not paid/completed.

        Raises:
            NotFound: no such registration
            RegistrationLocked: the registration is paid or completed
        """
        registration = await self.get(registration_key)

        result = await self.collection.delete_one({
            "_id": registration["_id"],
            "payment_status": {"$ne": PaymentStatus.PAID.value},
            "status": {"$ne": RegistrationStatus.COMPLETED.value}
        })
        if result.deleted_count == 1:
            logger.info(f"Registration deleted: {registration['_id']}")
            return registration

        if await self.collection.find_one({"_id": registration["_id"]}) is None:
            raise NotFound(f"Registration not found: {registration_key}")
        raise RegistrationLocked(
            f"Registration {registration.get('registration_id') or registration['_id']} "
            f"is paid/completed and cannot be deleted"
        )

    # =========================================================================
    # LIST
    # =========================================================================

    async def list_registrations(
        self,
        filters: Optional[Dict[str, Any]] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        page: int = 1,
        limit: int = 10
    ) -> Dict[str, Any]:
        filters = filters or {}

        if sort_by not in SORTABLE_FIELDS:
            raise ValidationError(f"Cannot sort by {sort_by}", ["sort_by"])
        if page < 1:
            raise ValidationError("page must be >= 1", ["page"])
        if limit < 1:
            raise ValidationError("limit must be >= 1", ["limit"])
        limit = min(limit, MAX_PAGE_SIZE)

        query: Dict[str, Any] = {}
        if filters.get("current_class"):
            query["current_class"] = filters["current_class"]
        if filters.get("exam_date"):
            query["exam_date"] = filters["exam_date"]
        if filters.get("status"):
            query["status"] = filters["status"]
        if filters.get("payment_status"):
            query["payment_status"] = filters["payment_status"]

        search = filters.get("search")
        if search:
            pattern = {"$regex": re.escape(search), "$options": "i"}
            query["$or"] = [
                {"student_name": pattern},
                {"parent_mobile": pattern},
                {"school_name": pattern},
                {"email": pattern},
            ]

        direction = 1 if sort_order == "asc" else -1
        total = await self.collection.count_documents(query)
        cursor = (
            self.collection.find(query)
            .sort(sort_by, direction)
            .skip((page - 1) * limit)
            .limit(limit)
        )
        registrations = await cursor.to_list(length=limit)

        return {
            "data": registrations,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": math.ceil(total / limit)
            }
        }

    async def exam_dates(self) -> List[str]:
        dates = await self.collection.distinct("exam_date")
        return sorted(d for d in dates if isinstance(d, str) and d)

    async def search_schools(self, query: Optional[str]) -> List[str]:
        """
        School-name suggestions for the registration form.

        Spellings that differ only by case are merged; the most frequent
        school comes first.
        """
        query = (query or "").strip()
        if len(query) < MIN_SCHOOL_QUERY_LENGTH:
            return []

        pipeline = [
            {"$match": {"school_name": {"$regex": re.escape(query), "$options": "i"}}},
            {
                "$group": {
                    "_id": {"normalized": {"$toUpper": "$school_name"}, "original": "$school_name"},
                    "count": {"$sum": 1}
                }
            },
            {
                "$group": {
                    "_id": "$_id.normalized",
                    "name": {"$first": "$_id.original"},
                    "count": {"$sum": "$count"}
                }
            },
            {"$sort": {"count": -1, "name": 1}},
            {"$limit": MAX_SCHOOL_SUGGESTIONS}
        ]
        results = await self.collection.aggregate(pipeline).to_list(length=MAX_SCHOOL_SUGGESTIONS)
        return [r["name"] for r in results]

    # =========================================================================
    # LEGACY BACKFILLS
    # =========================================================================

    async def rename_legacy_fields(self) -> Dict[str, int]:
        """
        Move camelCase fields from the previous system onto their current names.

        A field is only renamed where the current name is absent, so existing
        identifiers and receipt numbers are kept rather than re-issued.
        """
        renamed = {}
        for legacy, current in LEGACY_FIELD_NAMES.items():
            result = await self.collection.update_many(
                {legacy: {"$exists": True}, current: {"$exists": False}},
                {"$rename": {legacy: current}}
            )
            if result.modified_count:
                renamed[legacy] = result.modified_count
        if renamed:
            logger.info(f"Renamed legacy registration fields: {renamed}")
        return renamed

    async def backfill_registration_ids(self) -> List[Dict[str, Any]]:
        """Give identifiers to records created before identifiers existed, oldest first."""
        await self.rename_legacy_fields()
        cursor = self.collection.find({"registration_id": None}).sort("created_at", 1)
        legacy = await cursor.to_list(length=None)

        updated = []
        for registration in legacy:
            try:
                exam_type = ExamType(registration.get("exam_type") or ExamType.REGULAR.value)
            except ValueError:
                exam_type = ExamType.REGULAR
            status = (
                RegistrationStatus.COMPLETED
                if registration.get("status") == RegistrationStatus.COMPLETED.value
                else RegistrationStatus.DRAFT
            )

            sequence = await self.allocator.next_value(REGISTRATION_ID_SEQUENCE)
            registration_id = encode(exam_type, status, sequence)

            result = await self.collection.update_one(
                {"_id": registration["_id"], "registration_id": None},
                {"$set": {"registration_id": registration_id, "updated_at": datetime.utcnow()}}
            )
            if result.modified_count:
                updated.append({"id": str(registration["_id"]), "registration_id": registration_id})

        logger.info(f"Backfilled registration ids for {len(updated)} registrations")
        return updated

    async def backfill_receipt_numbers(self) -> List[Dict[str, Any]]:
        """Give receipt numbers to paid records that are missing one, oldest first."""
        await self.rename_legacy_fields()
        cursor = self.collection.find({
            "payment_status": PaymentStatus.PAID.value,
            "receipt_no": None
        }).sort("created_at", 1)
        paid = await cursor.to_list(length=None)

        updated = []
        for registration in paid:
            receipt_no = await self._write_missing_receipt(registration)
            if receipt_no:
                updated.append({
                    "id": str(registration["_id"]),
                    "registration_id": registration.get("registration_id"),
                    "receipt_no": receipt_no
                })

        logger.info(f"Backfilled receipt numbers for {len(updated)} registrations")
        return updated

    async def _write_missing_receipt(self, registration: Dict[str, Any]) -> Optional[str]:
        for attempt in range(self.MAX_RECEIPT_ATTEMPTS):
            if attempt == 0:
                receipt_no = await self.receipts.assign(registration.get("registration_id"))
            else:
                receipt_no = await self.receipts.generate_independent()
            try:
                result = await self.collection.update_one(
                    {"_id": registration["_id"], "receipt_no": None},
                    {"$set": {"receipt_no": receipt_no, "updated_at": datetime.utcnow()}}
                )
            except DuplicateKeyError:
                logger.warning(f"Receipt collision on {receipt_no} during backfill, retrying")
                continue
            return receipt_no if result.modified_count else None

        raise ReconciliationFailed(
            f"Could not assign a receipt number to {registration['_id']} "
            f"after {self.MAX_RECEIPT_ATTEMPTS} attempts"
        )
