"""
Registration lifecycle store tests
"""
from datetime import datetime, timedelta

import pytest
from pymongo.errors import DuplicateKeyError

from exam_core import (
    ValidationError,
    NotFound,
    RegistrationLocked,
    ReconciliationFailed,
    RECEIPT_NUMBER_SEQUENCE,
)


class TestCreateDraft:

    async def test_first_foundation_draft(self, store, registrant):
        registration = await store.create_draft(registrant)

        assert registration["registration_id"] == "BTNM-F-D-00001"
        assert registration["status"] == "draft"
        assert registration["payment_status"] == "pending"
        assert registration["registration_amount"] == 200
        assert "receipt_no" not in registration

    async def test_regular_uses_regular_fee_and_code(self, store, registrant):
        await store.create_draft(registrant)
        registrant["exam_type"] = "regular"
        registration = await store.create_draft(registrant)

        assert registration["registration_id"] == "BTNM-C-D-00002"
        assert registration["registration_amount"] == 500

    async def test_strips_whitespace(self, store, registrant):
        registrant["student_name"] = "  Asha Kulkarni  "
        registration = await store.create_draft(registrant)
        assert registration["student_name"] == "Asha Kulkarni"

    async def test_missing_required_fields(self, store, registrant):
        del registrant["school_name"]
        registrant["parent_mobile"] = "   "

        with pytest.raises(ValidationError) as exc_info:
            await store.create_draft(registrant)
        assert set(exc_info.value.fields) == {"school_name", "parent_mobile"}

    async def test_unknown_exam_type(self, store, registrant):
        registrant["exam_type"] = "advanced"
        with pytest.raises(ValidationError):
            await store.create_draft(registrant)

    async def test_failed_validation_burns_no_sequence(self, store, services, registrant):
        with pytest.raises(ValidationError):
            await store.create_draft({"student_name": "Only Name"})
        registration = await store.create_draft(registrant)
        assert registration["registration_id"].endswith("00001")

    async def test_preassigned_receipt_is_derived(self, store, registrant):
        store.preassign_receipt = True
        registration = await store.create_draft(registrant)
        assert registration["receipt_no"] == "btnmrzp00001"


class TestRead:

    async def test_get_unknown_key(self, store):
        with pytest.raises(NotFound):
            await store.get("65a000000000000000000000")

    async def test_get_invalid_key(self, store):
        with pytest.raises(NotFound):
            await store.get("not-an-object-id")

    async def test_find_by_order_id(self, store, registrant):
        registration = await store.create_draft(registrant)
        await store.set_order_id(registration, "order_abc")

        found = await store.find_by_order_id("order_abc")
        assert found["_id"] == registration["_id"]
        assert await store.find_by_order_id(None) is None


class TestMarkPaid:

    async def test_transition(self, store, registrant):
        registration = await store.create_draft(registrant)
        current, won = await store.mark_paid(registration, payment_id="pay_1", order_id="order_1")

        assert won
        assert current["status"] == "completed"
        assert current["payment_status"] == "paid"
        assert current["registration_id"] == "BTNM-F-C-00001"
        assert current["receipt_no"] == "btnmrzp00001"
        assert current["payment_id"] == "pay_1"
        assert isinstance(current["paid_at"], datetime)

    async def test_stale_second_call_is_noop(self, store, registrant):
        registration = await store.create_draft(registrant)
        first, first_won = await store.mark_paid(registration, payment_id="pay_1")
        # Same stale snapshot, as a concurrent trigger would hold
        second, second_won = await store.mark_paid(registration, payment_id="pay_2")

        assert first_won and not second_won
        assert second["receipt_no"] == first["receipt_no"]
        assert second["payment_id"] == "pay_1"

    async def test_keeps_preassigned_receipt(self, store, registrant):
        store.preassign_receipt = True
        registration = await store.create_draft(registrant)
        current, _ = await store.mark_paid(registration)
        assert current["receipt_no"] == registration["receipt_no"]

    async def test_malformed_identifier_still_completes(self, store, registrant):
        registration = await store.create_draft(registrant)
        await store.collection.update_one({"_id": registration["_id"]}, {"$set": {"registration_id": "LEGACY-9"}})
        registration = await store.get(registration["_id"])

        current, won = await store.mark_paid(registration)
        assert won
        assert current["registration_id"] == "LEGACY-9"
        assert current["receipt_no"] == "btnmrzp00001"

    async def test_null_receipt_counts_as_missing(self, store, registrant):
        registration = await store.create_draft(registrant)
        await store.collection.update_one({"_id": registration["_id"]}, {"$set": {"receipt_no": None}})
        registration = await store.get(registration["_id"])

        current, won = await store.mark_paid(registration, payment_id="pay_1")
        assert won
        assert current["payment_status"] == "paid"
        assert current["receipt_no"] == "btnmrzp00001"

    async def test_receipt_collision_retries_with_counter(self, store, registrant, monkeypatch):
        registration = await store.create_draft(registrant)
        real = store.collection.find_one_and_update
        calls = {"n": 0}

        async def colliding(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise DuplicateKeyError("E11000 duplicate key error index: unique_receipt_no")
            return await real(*args, **kwargs)

        monkeypatch.setattr(store.collection, "find_one_and_update", colliding)
        current, won = await store.mark_paid(registration)

        assert won
        assert calls["n"] == 2
        # Derived receipt collided, so the second attempt came from the receipt counter
        assert current["receipt_no"] == "btnmrzp00001"
        assert await store.allocator.current_value(RECEIPT_NUMBER_SEQUENCE) == 1

    async def test_endless_collisions_raise(self, store, registrant, monkeypatch):
        registration = await store.create_draft(registrant)

        async def always_colliding(*args, **kwargs):
            raise DuplicateKeyError("E11000 duplicate key error index: unique_receipt_no")

        monkeypatch.setattr(store.collection, "find_one_and_update", always_colliding)
        with pytest.raises(ReconciliationFailed):
            await store.mark_paid(registration)

    async def test_deleted_mid_transition(self, store, registrant):
        registration = await store.create_draft(registrant)
        await store.collection.delete_one({"_id": registration["_id"]})
        with pytest.raises(NotFound):
            await store.mark_paid(registration)


class TestApplyEdit:

    async def test_drops_non_allowlisted_fields(self, store, registrant):
        registration = await store.create_draft(registrant)
        updated = await store.apply_edit(str(registration["_id"]), {
            "school_name": "New School",
            "receipt_no": "btnmrzp99999",
            "registration_id": "BTNM-F-C-99999",
        })
        assert updated["school_name"] == "New School"
        assert "receipt_no" not in updated
        assert updated["registration_id"] == "BTNM-F-D-00001"

    async def test_marking_paid_runs_transition(self, store, registrant):
        registration = await store.create_draft(registrant)
        updated = await store.apply_edit(str(registration["_id"]), {"payment_status": "paid"})

        assert updated["status"] == "completed"
        assert updated["registration_id"] == "BTNM-F-C-00001"
        assert updated["receipt_no"] == "btnmrzp00001"

    async def test_terminal_registration_keeps_state(self, store, registrant):
        registration = await store.create_draft(registrant)
        await store.mark_paid(registration)

        updated = await store.apply_edit(str(registration["_id"]), {
            "status": "draft",
            "payment_status": "pending",
            "parent_mobile": "9000000000",
        })
        assert updated["status"] == "completed"
        assert updated["payment_status"] == "paid"
        assert updated["parent_mobile"] == "9000000000"

    async def test_non_terminal_state_edit(self, store, registrant):
        registration = await store.create_draft(registrant)
        updated = await store.apply_edit(str(registration["_id"]), {"payment_status": "waived"})
        assert updated["payment_status"] == "waived"
        assert updated["status"] == "draft"

    @pytest.mark.parametrize("patch", [
        {"status": "archived"},
        {"payment_status": "refunded"},
        {"status": "completed", "payment_status": "pending"},
        {"status": "draft", "payment_status": "paid"},
    ])
    async def test_rejects_inconsistent_state(self, store, registrant, patch):
        registration = await store.create_draft(registrant)
        with pytest.raises(ValidationError):
            await store.apply_edit(str(registration["_id"]), patch)


class TestDelete:

    async def test_deletes_draft(self, store, registrant):
        registration = await store.create_draft(registrant)
        await store.delete(str(registration["_id"]))
        with pytest.raises(NotFound):
            await store.get(registration["_id"])

    async def test_paid_is_locked(self, store, registrant):
        registration = await store.create_draft(registrant)
        await store.mark_paid(registration)
        with pytest.raises(RegistrationLocked):
            await store.delete(str(registration["_id"]))
        assert (await store.get(registration["_id"]))["payment_status"] == "paid"

    async def test_unknown(self, store):
        with pytest.raises(NotFound):
            await store.delete("65a000000000000000000000")


class TestListing:

    async def test_filters_search_and_pagination(self, store, registrant):
        for name in ["Asha", "Bilal", "Chetan"]:
            await store.create_draft({**registrant, "student_name": name})
        await store.create_draft({**registrant, "student_name": "Divya", "current_class": "11", "exam_type": "regular"})

        page = await store.list_registrations(
            filters={"current_class": "8"}, sort_by="student_name", sort_order="asc", page=1, limit=2
        )
        assert [r["student_name"] for r in page["data"]] == ["Asha", "Bilal"]
        assert page["pagination"] == {"page": 1, "limit": 2, "total": 3, "total_pages": 2}

        found = await store.list_registrations(filters={"search": "divy"})
        assert [r["student_name"] for r in found["data"]] == ["Divya"]

    async def test_search_is_literal(self, store, registrant):
        await store.create_draft(registrant)
        found = await store.list_registrations(filters={"search": ".*"})
        assert found["pagination"]["total"] == 0

    async def test_rejects_unknown_sort_field(self, store):
        with pytest.raises(ValidationError):
            await store.list_registrations(sort_by="payment_signature")

    async def test_exam_dates(self, store, registrant):
        await store.create_draft({**registrant, "exam_date": "2026-01-18"})
        await store.create_draft(registrant)
        assert await store.exam_dates() == ["2026-01-11", "2026-01-18"]


class TestSchoolSearch:

    async def test_short_query_returns_nothing(self, db, store):
        await db.registrations.insert_one({"school_name": "St. Mary's High School"})
        assert await store.search_schools("S") == []
        assert await store.search_schools("  ") == []
        assert await store.search_schools(None) == []

    async def test_case_variants_merge_most_frequent_first(self, db, store):
        await db.registrations.insert_many([
            {"school_name": "St. Mary's High School"},
            {"school_name": "ST. MARY'S HIGH SCHOOL"},
            {"school_name": "St. Mary's High School"},
            {"school_name": "Mary Immaculate Convent"},
            {"school_name": "Delhi Public School"},
        ])

        results = await store.search_schools("mary")
        assert len(results) == 2
        assert results[0].upper() == "ST. MARY'S HIGH SCHOOL"
        assert results[1] == "Mary Immaculate Convent"

    async def test_limits_suggestions(self, db, store):
        await db.registrations.insert_many([
            {"school_name": f"Kendriya Vidyalaya No. {n}"} for n in range(1, 9)
        ])
        assert len(await store.search_schools("kendriya")) == 6

    async def test_query_is_literal(self, db, store):
        await db.registrations.insert_one({"school_name": "St. Mary's High School"})
        assert await store.search_schools(".*") == []
        assert await store.search_schools("(st") == []


class TestBackfills:

    async def test_registration_ids_for_legacy_records(self, db, store):
        now = datetime.utcnow()
        await db.registrations.insert_many([
            {"student_name": "Old Draft", "exam_type": "foundation", "status": "draft",
             "payment_status": "pending", "created_at": now},
            {"student_name": "Old Paid", "status": "completed",
             "payment_status": "paid", "created_at": now + timedelta(seconds=1)},
        ])

        updated = await store.backfill_registration_ids()
        assert sorted(u["registration_id"] for u in updated) == ["BTNM-C-C-00002", "BTNM-F-D-00001"]
        assert await store.backfill_registration_ids() == []

    async def test_receipt_numbers_for_paid_records(self, db, store):
        await db.registrations.insert_one({
            "registration_id": "BTNM-C-C-00031",
            "status": "completed",
            "payment_status": "paid",
            "created_at": datetime.utcnow(),
        })

        updated = await store.backfill_receipt_numbers()
        assert [u["receipt_no"] for u in updated] == ["btnmrzp00031"]
        assert await store.backfill_receipt_numbers() == []

    async def test_receipt_for_paid_record_with_null_receipt(self, db, store):
        await db.registrations.insert_one({
            "registration_id": "BTNM-F-C-00012",
            "receipt_no": None,
            "status": "completed",
            "payment_status": "paid",
            "created_at": datetime.utcnow(),
        })

        updated = await store.backfill_receipt_numbers()
        assert [u["receipt_no"] for u in updated] == ["btnmrzp00012"]

    async def test_camel_case_records_keep_their_numbers(self, db, store):
        await db.registrations.insert_one({
            "studentName": "Old Camel",
            "examType": "foundation",
            "registrationId": "BTNM-F-C-00007",
            "receiptNo": "btnmrzp00007",
            "status": "completed",
            "paymentStatus": "paid",
            "createdAt": datetime.utcnow(),
        })

        assert await store.backfill_registration_ids() == []
        assert await store.backfill_receipt_numbers() == []

        stored = await db.registrations.find_one({"student_name": "Old Camel"})
        assert stored["registration_id"] == "BTNM-F-C-00007"
        assert stored["receipt_no"] == "btnmrzp00007"
        assert stored["payment_status"] == "paid"
        assert "registrationId" not in stored
        assert "receiptNo" not in stored

    async def test_rename_keeps_current_field(self, db, store):
        await db.registrations.insert_one({
            "registration_id": "BTNM-R-C-00003",
            "registrationId": "BTNM-R-C-00099",
            "paymentStatus": "pending",
        })

        assert await store.rename_legacy_fields() == {"paymentStatus": 1}
        stored = await db.registrations.find_one({})
        assert stored["registration_id"] == "BTNM-R-C-00003"
        assert stored["payment_status"] == "pending"
        assert await store.rename_legacy_fields() == {}
