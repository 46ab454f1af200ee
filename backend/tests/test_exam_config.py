"""
Exam configuration tests
"""
import pytest

from exam_core import ExamConfigService, ValidationError


@pytest.fixture
def exam_config(db):
    return ExamConfigService(db)


class TestExamConfig:

    async def test_default_created_once(self, db, exam_config):
        first = await exam_config.get_active()
        second = await exam_config.get_active()

        assert first["_id"] == second["_id"]
        assert first["pricing"] == {"foundation": 200, "regular": 500}
        assert await db.exam_config.count_documents({}) == 1

    async def test_fee_for(self, exam_config):
        assert await exam_config.fee_for("foundation") == 200
        assert await exam_config.fee_for("regular") == 500
        with pytest.raises(ValueError):
            await exam_config.fee_for("advanced")

    async def test_update(self, exam_config):
        updated = await exam_config.update(
            exam_dates=[
                {"id": "slot-1", "value": "2026-02-01", "label": "Slot 1", "time": "10:00 AM", "enabled": True},
                {"id": "slot-2", "value": "2026-02-08", "label": "Slot 2", "time": "10:00 AM", "enabled": False},
            ],
            pricing={"foundation": 250, "regular": 600}
        )

        assert updated["pricing"] == {"foundation": 250, "regular": 600}
        assert [d["id"] for d in await exam_config.enabled_exam_dates()] == ["slot-1"]
        assert await exam_config.fee_for("regular") == 600

    @pytest.mark.parametrize("exam_dates, pricing", [
        ([], {"foundation": 200, "regular": 500}),
        ([{"id": "a", "value": "2026-02-01"}, {"id": "a", "value": "2026-02-08"}], {"foundation": 200, "regular": 500}),
        ([{"id": "a", "value": ""}], {"foundation": 200, "regular": 500}),
        ([{"id": "a", "value": "2026-02-01"}], {"foundation": -1, "regular": 500}),
        ([{"id": "a", "value": "2026-02-01"}], {"foundation": 200}),
    ])
    async def test_update_rejects_invalid(self, exam_config, exam_dates, pricing):
        with pytest.raises(ValidationError):
            await exam_config.update(exam_dates=exam_dates, pricing=pricing)

    async def test_new_drafts_use_updated_fee(self, store, services, registrant):
        await services.exam_config.update(
            exam_dates=[{"id": "slot-1", "value": "2026-01-11"}],
            pricing={"foundation": 275, "regular": 500}
        )
        registration = await store.create_draft(registrant)
        assert registration["registration_amount"] == 275
