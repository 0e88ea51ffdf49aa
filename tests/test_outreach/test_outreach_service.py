"""Tests for single-shot and manual outreach."""

from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from benefit_outreach.db.models import OutreachLogModel
from benefit_outreach.services.dispatch import NO_ELIGIBLE_CHANNEL
from benefit_outreach.services.outreach_service import trigger_days


async def fetch_logs(session, **filters):
    stmt = select(OutreachLogModel).order_by(OutreachLogModel.created_at, OutreachLogModel.message_type)
    for name, value in filters.items():
        stmt = stmt.where(getattr(OutreachLogModel, name) == value)
    return (await session.execute(stmt)).scalars().all()


@pytest.mark.parametrize(
    "trigger,days",
    [("expiring_60", 60), ("expiring_30", 30), ("expiring_14", 14), ("manual", 60), (None, 60)],
)
def test_trigger_days(trigger, days):
    assert trigger_days(trigger) == days


class TestAutomatedOutreach:
    @pytest.mark.asyncio
    async def test_sends_and_logs(self, db_session, make_practice, make_patient, make_campaign, make_service, sms_sender):
        practice = await make_practice()
        patient = await make_patient(practice)
        campaign = await make_campaign(practice)

        result = await make_service().process_automated_outreach(practice.id)

        assert result.to_dict() == {"sent": 1, "failed": 0, "skipped": 0}
        assert sms_sender.calls[0]["recipient"] == "+15551234567"
        assert sms_sender.calls[0]["body"].startswith("Hi Jane, you have $483 in benefits expiring")
        logs = await fetch_logs(db_session, patient_id=patient.id)
        assert len(logs) == 1
        assert logs[0].campaign_id == campaign.id
        assert logs[0].status == "sent"
        assert logs[0].external_id == "msg-1"
        await db_session.refresh(practice)
        assert practice.messages_sent_this_month == 1

    @pytest.mark.asyncio
    async def test_cooldown(self, db_session, clock, make_practice, make_patient, make_campaign, make_log, make_service, sms_sender):
        practice = await make_practice()
        recent = await make_patient(practice, first_name="Recent", phone="+15550000001")
        stale = await make_patient(practice, first_name="Stale", phone="+15550000002")
        campaign = await make_campaign(practice)
        await make_log(campaign, recent, created_at=clock.now - timedelta(days=3))
        await make_log(campaign, stale, created_at=clock.now - timedelta(days=8))

        result = await make_service().process_automated_outreach(practice.id)

        assert result.sent == 1
        assert result.skipped == 1
        assert [call["recipient"] for call in sms_sender.calls] == ["+15550000002"]

    @pytest.mark.asyncio
    async def test_one_failing_patient_does_not_stop_the_batch(
        self, db_session, make_practice, make_patient, make_campaign, make_service, make_sender
    ):
        practice = await make_practice()
        practice_id = practice.id
        patient_ids = []
        for n in range(5):
            patient = await make_patient(practice, first_name=f"P{n}", expires_in_days=10 + n)
            patient_ids.append(patient.id)
        await make_campaign(practice)
        flaky = make_sender(raise_on={2})

        result = await make_service(sms_sender=flaky).process_automated_outreach(practice_id)

        assert result.sent == 4
        assert result.failed == 1
        assert len(flaky.calls) == 5
        assert await fetch_logs(db_session, patient_id=patient_ids[1]) == []
        assert len(await fetch_logs(db_session, patient_id=patient_ids[4])) == 1

    @pytest.mark.asyncio
    async def test_inactive_and_sequence_campaigns_ignored(
        self, make_practice, make_patient, make_campaign, make_service, sms_sender
    ):
        practice = await make_practice()
        await make_patient(practice)
        await make_campaign(practice, is_active=False)
        await make_campaign(practice, steps=[{}])

        result = await make_service().process_automated_outreach(practice.id)

        assert result.to_dict() == {"sent": 0, "failed": 0, "skipped": 0}
        assert sms_sender.calls == []

    @pytest.mark.asyncio
    async def test_below_minimum_amount_not_targeted(
        self, make_practice, make_patient, make_campaign, make_service, sms_sender
    ):
        practice = await make_practice()
        await make_patient(practice, remaining=150.0)
        await make_campaign(practice, min_benefit_amount=200)

        await make_service().process_automated_outreach(practice.id)

        assert sms_sender.calls == []

    @pytest.mark.asyncio
    async def test_usage_limit_skips_run(self, make_practice, make_patient, make_campaign, make_service, sms_sender):
        practice = await make_practice(messages_included=10, messages_sent_this_month=11)
        await make_patient(practice)
        await make_campaign(practice)

        result = await make_service().process_automated_outreach(practice.id)

        assert result.to_dict() == {"sent": 0, "failed": 0, "skipped": 0}
        assert sms_sender.calls == []

    @pytest.mark.asyncio
    async def test_simulated_sends_do_not_count_usage(
        self, db_session, make_practice, make_patient, make_campaign, make_service
    ):
        practice = await make_practice()
        await make_patient(practice)
        await make_campaign(practice)

        result = await make_service(sms_sender=None, email_sender=None).process_automated_outreach(practice.id)

        assert result.sent == 1
        await db_session.refresh(practice)
        assert practice.messages_sent_this_month == 0


class TestBothChannels:
    @pytest.mark.asyncio
    async def test_sent_when_one_channel_succeeds(
        self, db_session, make_practice, make_patient, make_campaign, make_service, email_sender, make_sender
    ):
        practice = await make_practice()
        patient = await make_patient(practice)
        await make_campaign(practice, message_type="both")

        result = await make_service(sms_sender=make_sender(always_fail=True)).process_automated_outreach(practice.id)

        assert result.sent == 1
        assert result.failed == 0
        logs = await fetch_logs(db_session, patient_id=patient.id)
        assert sorted((log.message_type, log.status) for log in logs) == [
            ("email", "sent"),
            ("sms", "failed"),
        ]
        assert email_sender.calls[0]["metadata"]["recipient_name"] == "Jane"

    @pytest.mark.asyncio
    async def test_failed_when_every_channel_fails(self, make_practice, make_patient, make_campaign, make_service, make_sender):
        practice = await make_practice()
        await make_patient(practice)
        await make_campaign(practice, message_type="both")

        service = make_service(
            sms_sender=make_sender(always_fail=True),
            email_sender=make_sender(always_fail=True),
        )
        result = await service.process_automated_outreach(practice.id)

        assert result.failed == 1
        assert result.sent == 0

    @pytest.mark.asyncio
    async def test_opted_out_channel_is_skipped(
        self, db_session, make_practice, make_patient, make_campaign, make_preferences, make_service, sms_sender, email_sender
    ):
        practice = await make_practice()
        patient = await make_patient(practice)
        await make_preferences(patient, sms_opt_out=True)
        await make_campaign(practice, message_type="both")

        result = await make_service().process_automated_outreach(practice.id)

        assert result.sent == 1
        assert sms_sender.calls == []
        assert len(email_sender.calls) == 1

    @pytest.mark.asyncio
    async def test_skipped_when_nothing_can_be_attempted(
        self, db_session, make_practice, make_patient, make_campaign, make_preferences, make_service
    ):
        practice = await make_practice()
        opted_out = await make_patient(practice)
        await make_preferences(opted_out, sms_opt_out=True, email_opt_out=True)
        await make_patient(practice, first_name="NoContact", email=None, phone=None)
        await make_campaign(practice, message_type="both")

        result = await make_service().process_automated_outreach(practice.id)

        assert result.to_dict() == {"sent": 0, "failed": 0, "skipped": 2}
        assert await fetch_logs(db_session) == []


class TestManualOutreach:
    @pytest.mark.asyncio
    async def test_campaign_not_found(self, make_practice, make_patient, make_service):
        practice = await make_practice()
        patient = await make_patient(practice)

        result = await make_service().send_manual_outreach(patient.id, practice.id, uuid4())

        assert result.success is False
        assert result.error == "Campaign not found"

    @pytest.mark.asyncio
    async def test_campaign_of_other_practice_not_found(self, make_practice, make_patient, make_campaign, make_service):
        practice = await make_practice()
        other = await make_practice(name="Other Dental")
        patient = await make_patient(practice)
        foreign = await make_campaign(other)

        result = await make_service().send_manual_outreach(patient.id, practice.id, foreign.id)

        assert result.error == "Campaign not found"

    @pytest.mark.asyncio
    async def test_simulated_success_is_logged(self, db_session, make_practice, make_patient, make_campaign, make_service):
        practice = await make_practice()
        patient = await make_patient(practice)
        campaign = await make_campaign(practice, is_active=False)

        service = make_service(sms_sender=None, email_sender=None)
        result = await service.send_manual_outreach(patient.id, practice.id, campaign.id)

        assert result.success is True
        assert result.simulated is True
        assert result.message_id.startswith("mock_sms_")
        logs = await fetch_logs(db_session, patient_id=patient.id)
        assert [log.status for log in logs] == ["sent"]

    @pytest.mark.asyncio
    async def test_ignores_cooldown(self, clock, make_practice, make_patient, make_campaign, make_log, make_service, sms_sender):
        practice = await make_practice()
        patient = await make_patient(practice)
        campaign = await make_campaign(practice)
        await make_log(campaign, patient, created_at=clock.now - timedelta(hours=1))

        result = await make_service().send_manual_outreach(patient.id, practice.id, campaign.id)

        assert result.success is True
        assert len(sms_sender.calls) == 1

    @pytest.mark.asyncio
    async def test_message_type_override(self, make_practice, make_patient, make_campaign, make_service, sms_sender, email_sender):
        practice = await make_practice()
        patient = await make_patient(practice)
        campaign = await make_campaign(practice, message_type="sms")

        result = await make_service().send_manual_outreach(patient.id, practice.id, campaign.id, "email")

        assert result.success is True
        assert sms_sender.calls == []
        assert email_sender.calls[0]["recipient"] == "jane@example.test"

    @pytest.mark.asyncio
    async def test_usage_denied(self, make_practice, make_patient, make_campaign, make_service, sms_sender):
        practice = await make_practice(messages_included=10, messages_sent_this_month=11)
        patient = await make_patient(practice)
        campaign = await make_campaign(practice)

        result = await make_service().send_manual_outreach(patient.id, practice.id, campaign.id)

        assert result.success is False
        assert result.error == "Monthly message limit reached"
        assert sms_sender.calls == []

    @pytest.mark.asyncio
    async def test_patient_without_benefits(self, make_practice, make_patient, make_campaign, make_service):
        practice = await make_practice()
        patient = await make_patient(practice, remaining=None)
        campaign = await make_campaign(practice)

        result = await make_service().send_manual_outreach(patient.id, practice.id, campaign.id)

        assert result.error == "Patient benefits not found"

    @pytest.mark.asyncio
    async def test_opted_out_patient(self, make_practice, make_patient, make_campaign, make_preferences, make_service):
        practice = await make_practice()
        patient = await make_patient(practice)
        await make_preferences(patient, sms_opt_out=True)
        campaign = await make_campaign(practice)

        result = await make_service().send_manual_outreach(patient.id, practice.id, campaign.id)

        assert result.success is False
        assert result.error == NO_ELIGIBLE_CHANNEL

    @pytest.mark.asyncio
    async def test_unexpected_error_is_reported(self, make_practice, make_patient, make_campaign, make_service, make_sender):
        practice = await make_practice()
        practice_id = practice.id
        patient = await make_patient(practice)
        patient_id = patient.id
        campaign = await make_campaign(practice)
        campaign_id = campaign.id

        service = make_service(sms_sender=make_sender(raise_on={1}))
        result = await service.send_manual_outreach(patient_id, practice_id, campaign_id)

        assert result.success is False
        assert result.error == "Failed to send message"
