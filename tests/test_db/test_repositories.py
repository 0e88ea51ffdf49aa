"""Tests for repository queries and guarded updates."""

from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

import pytest

from benefit_outreach.core.exceptions import TenantNotFoundError
from benefit_outreach.db.models import MessageEventModel, PatientSequenceStateModel
from benefit_outreach.db.repositories import (
    MessageEventRepository,
    OutreachLogRepository,
    PatientRepository,
    PracticeRepository,
    SequenceStateRepository,
)


@pytest.fixture
def make_state(db_session, clock):
    async def _make(campaign, patient, **overrides):
        fields = {
            "campaign_id": campaign.id,
            "patient_id": patient.id,
            "current_step_number": 0,
            "status": "active",
            "next_scheduled_at": clock.now,
            "started_at": clock.now,
            "created_at": clock.now,
            "updated_at": clock.now,
        }
        fields.update(overrides)
        state = PatientSequenceStateModel(**fields)
        db_session.add(state)
        await db_session.commit()
        return state

    return _make


class TestPracticeRepository:
    @pytest.mark.asyncio
    async def test_unknown_practice_raises_tenant_error(self, db_session):
        with pytest.raises(TenantNotFoundError):
            await PracticeRepository(db_session).get_or_raise(uuid4())

    @pytest.mark.asyncio
    async def test_billable_ids(self, db_session, clock, make_practice):
        active = await make_practice(subscription_status="active")
        trial = await make_practice(subscription_status="trial", trial_ends_at=clock.now + timedelta(days=1))
        await make_practice(subscription_status="trial", trial_ends_at=clock.now - timedelta(days=1))
        await make_practice(subscription_status="canceled")

        ids = await PracticeRepository(db_session).list_billable_ids(clock.now)

        assert set(ids) == {active.id, trial.id}


class TestSequenceStateRepository:
    @pytest.mark.asyncio
    async def test_claim_is_compare_and_set(
        self, db_session, clock, make_practice, make_patient, make_campaign, make_state
    ):
        practice = await make_practice()
        patient = await make_patient(practice)
        campaign = await make_campaign(practice, steps=[{}])
        state = await make_state(campaign, patient)
        repo = SequenceStateRepository(db_session)
        lease = clock.now + timedelta(minutes=10)

        assert await repo.claim(state.id, clock.now, lease, clock.now) is True
        assert await repo.claim(state.id, clock.now, lease, clock.now) is False

    @pytest.mark.asyncio
    async def test_list_due_only_active_and_due(
        self, db_session, clock, make_practice, make_patient, make_campaign, make_state
    ):
        practice = await make_practice()
        campaign = await make_campaign(practice, steps=[{}])
        due = await make_state(campaign, await make_patient(practice, first_name="Due"))
        await make_state(
            campaign,
            await make_patient(practice, first_name="Later"),
            next_scheduled_at=clock.now + timedelta(hours=1),
        )
        await make_state(
            campaign,
            await make_patient(practice, first_name="Done"),
            status="completed",
            next_scheduled_at=None,
        )

        states = await SequenceStateRepository(db_session).list_due(practice.id, clock.now)

        assert [s.id for s in states] == [due.id]

    @pytest.mark.asyncio
    async def test_transitions_require_active(
        self, db_session, clock, make_practice, make_patient, make_campaign, make_state
    ):
        practice = await make_practice()
        patient = await make_patient(practice)
        campaign = await make_campaign(practice, steps=[{}])
        state = await make_state(campaign, patient, status="stopped", next_scheduled_at=None)
        repo = SequenceStateRepository(db_session)

        assert await repo.advance(state.id, 1, clock.now, clock.now) is False
        assert await repo.stop(state.id, "opted_out", clock.now) is False
        assert await repo.complete(state.id, clock.now) is False


class TestEventAndLogQueries:
    @pytest.mark.asyncio
    async def test_exists_for_with_and_without_time(
        self, db_session, clock, make_practice, make_patient, make_campaign, make_log
    ):
        practice = await make_practice()
        patient = await make_patient(practice)
        campaign = await make_campaign(practice)
        outreach_log = await make_log(campaign, patient)
        db_session.add(
            MessageEventModel(
                outreach_log_id=outreach_log.id,
                event_type="open",
                occurred_at=clock.now,
                provider="sendgrid",
                created_at=clock.now,
                updated_at=clock.now,
            )
        )
        await db_session.commit()
        repo = MessageEventRepository(db_session)

        assert await repo.exists_for(outreach_log.id, "open") is True
        assert await repo.exists_for(outreach_log.id, "open", clock.now) is True
        assert await repo.exists_for(outreach_log.id, "open", clock.now + timedelta(seconds=1)) is False
        assert await repo.exists_for(outreach_log.id, "click") is False

    @pytest.mark.asyncio
    async def test_has_response_since(self, db_session, clock, make_practice, make_patient, make_campaign, make_log):
        practice = await make_practice()
        patient = await make_patient(practice)
        campaign = await make_campaign(practice)
        await make_log(campaign, patient, status="responded", created_at=clock.now - timedelta(days=1))
        repo = OutreachLogRepository(db_session)

        assert await repo.has_response_since(patient.id, campaign.id, clock.now - timedelta(days=2)) is True
        assert await repo.has_response_since(patient.id, campaign.id, clock.now) is False

    @pytest.mark.asyncio
    async def test_find_by_phone_scoped_to_practice(self, db_session, make_practice, make_patient):
        practice = await make_practice()
        other = await make_practice(name="Other Dental")
        mine = await make_patient(practice)
        theirs = await make_patient(other)
        repo = PatientRepository(db_session)

        assert {p.id for p in await repo.find_by_phone("+15551234567")} == {mine.id, theirs.id}
        assert [p.id for p in await repo.find_by_phone("+15551234567", practice.id)] == [mine.id]
