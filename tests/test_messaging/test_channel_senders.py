"""Tests for SMS and email senders."""

from __future__ import annotations

import pytest

from benefit_outreach.core.metrics import SEND_FAILED, SEND_SIMULATED, SEND_SUCCEEDED
from benefit_outreach.db.models import MessagingProvider
from benefit_outreach.services.channel_senders import EmailSender, SMSSender


class TestSMSSender:
    @pytest.mark.asyncio
    async def test_simulated_without_provider(self, make_practice, make_factory, settings, metrics):
        practice = await make_practice()
        sender = SMSSender(make_factory(settings), settings, metrics=metrics)

        result = await sender.send(practice.id, "+15551234567", "Hi Jane")

        assert result.success is True
        assert result.simulated is True
        assert result.message_id.startswith("mock_sms_")
        assert result.provider == MessagingProvider.SYSTEM
        assert metrics.get(SEND_SIMULATED) == 1

    @pytest.mark.asyncio
    async def test_sends_with_status_callback(self, make_practice, make_factory, system_settings, metrics):
        practice = await make_practice()
        factory = make_factory(system_settings)
        sender = SMSSender(factory, system_settings, metrics=metrics)

        result = await sender.send(practice.id, "+15551234567", "Hi Jane")

        assert result.success is True
        assert result.message_id == "SM1"
        gateway = (await factory.resolve_sms(practice.id)).client
        message = gateway.sent[0]
        assert message.from_number == "+15550001111"
        assert message.status_callback == (
            f"https://localhost/api/webhooks/twilio?practice_id={practice.id}"
        )
        assert metrics.get(SEND_SUCCEEDED) == 1

    @pytest.mark.asyncio
    async def test_configuration_error_becomes_failed_result(
        self, make_practice, make_factory, settings, metrics
    ):
        practice = await make_practice(sms_provider="custom_twilio", sms_fallback_enabled=False)
        sender = SMSSender(make_factory(settings), settings, metrics=metrics)

        result = await sender.send(practice.id, "+15551234567", "Hi Jane")

        assert result.success is False
        assert result.provider == MessagingProvider.CUSTOM_TWILIO
        assert result.error.startswith("Custom Twilio configuration failed")
        assert metrics.get(SEND_FAILED) == 1

    @pytest.mark.asyncio
    async def test_gateway_exception_becomes_failed_result(
        self, make_practice, make_factory, system_settings, metrics
    ):
        practice = await make_practice()
        factory = make_factory(system_settings)
        (await factory.resolve_sms(practice.id)).client.error = RuntimeError("connection reset")
        sender = SMSSender(factory, system_settings, metrics=metrics)

        result = await sender.send(practice.id, "+15551234567", "Hi Jane")

        assert result.success is False
        assert result.error == "connection reset"

    @pytest.mark.asyncio
    async def test_provider_rejection(self, make_practice, make_factory, system_settings, metrics):
        practice = await make_practice()
        factory = make_factory(system_settings)
        (await factory.resolve_sms(practice.id)).client.fail_with = "[21610] Unsubscribed recipient"
        sender = SMSSender(factory, system_settings, metrics=metrics)

        result = await sender.send(practice.id, "+15551234567", "Hi Jane")

        assert result.to_dict() == {
            "success": False,
            "message_id": None,
            "error": "[21610] Unsubscribed recipient",
            "provider": "system",
            "simulated": False,
        }


class TestEmailSender:
    @pytest.mark.asyncio
    async def test_simulated_without_provider(self, make_practice, make_factory, settings, metrics):
        practice = await make_practice()
        sender = EmailSender(make_factory(settings), settings, metrics=metrics)

        result = await sender.send(practice.id, "jane@example.test", "Hi Jane")

        assert result.simulated is True
        assert result.message_id.startswith("mock_email_")

    @pytest.mark.asyncio
    async def test_message_carries_tracking_args_and_unsubscribe_link(
        self, make_practice, make_factory, system_settings, metrics
    ):
        practice = await make_practice()
        factory = make_factory(system_settings)
        sender = EmailSender(factory, system_settings, metrics=metrics)

        result = await sender.send(
            practice.id,
            "jane@example.test",
            "You have $483 left.",
            metadata={
                "patient_id": "p-1",
                "campaign_id": "c-1",
                "recipient_name": "Jane",
                "subject": "Use it or lose it",
            },
        )

        assert result.success is True
        assert result.message_id == "msg1"
        message = (await factory.resolve_email(practice.id)).client.sent[0]
        assert message.subject == "Use it or lose it"
        assert message.custom_args == {
            "campaignId": "c-1",
            "patientId": "p-1",
            "practiceId": str(practice.id),
        }
        assert "https://localhost/unsubscribe?patient=p-1&amp;channel=email" in message.body_html
        assert "Jane" in message.body_html
        assert message.body_text == "You have $483 left."

    @pytest.mark.asyncio
    async def test_configuration_error(self, make_practice, make_factory, settings, metrics):
        practice = await make_practice(email_provider="custom_sendgrid", email_fallback_enabled=False)
        sender = EmailSender(make_factory(settings), settings, metrics=metrics)

        result = await sender.send(practice.id, "jane@example.test", "Hi")

        assert result.success is False
        assert result.provider == MessagingProvider.CUSTOM_SENDGRID
