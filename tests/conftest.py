"""Pytest configuration and fixtures for benefit outreach tests."""

from __future__ import annotations

import os
from datetime import datetime, timedelta
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio

# Set test environment before settings are first loaded
os.environ.setdefault("OUTREACH_ENV", "test")
os.environ.setdefault("OUTREACH_DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("OUTREACH_SCHEDULER__ENABLED", "false")

from benefit_outreach.config import Settings  # noqa: E402
from benefit_outreach.core.metrics import OutreachMetrics  # noqa: E402
from benefit_outreach.db.models import (  # noqa: E402
    CampaignStepModel,
    OutreachCampaignModel,
    OutreachLogModel,
    PatientInsuranceModel,
    PatientModel,
    PatientPreferencesModel,
    PracticeModel,
)
from benefit_outreach.db.session import create_test_engine, get_test_session_factory  # noqa: E402

NOW = datetime(2025, 11, 3, 12, 0, 0)


class FakeClock:
    """Controllable replacement for utc_now."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    """Settings with no system provider credentials (sends are simulated)."""
    settings = Settings(environment="test")
    settings.outreach.log_write_base_delay = 0.0
    return settings


@pytest.fixture
def metrics() -> OutreachMetrics:
    return OutreachMetrics()


# ============================================================================
# Async Database Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory database per test."""
    engine = await create_test_engine()
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return get_test_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator:
    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# Factories
# ============================================================================


@pytest.fixture
def make_practice(db_session, clock):
    async def _make(**overrides: Any) -> PracticeModel:
        fields: dict[str, Any] = {
            "name": "Bright Smiles Dental",
            "email": "office@brightsmiles.test",
            "phone": "+15550000000",
            "subscription_status": "active",
            "messages_included": 500,
            "messages_sent_this_month": 0,
            "billing_cycle_start": clock.now - timedelta(days=5),
            "created_at": clock.now,
            "updated_at": clock.now,
        }
        fields.update(overrides)
        practice = PracticeModel(**fields)
        db_session.add(practice)
        await db_session.commit()
        return practice

    return _make


@pytest.fixture
def make_patient(db_session, clock):
    async def _make(
        practice: PracticeModel,
        *,
        first_name: str = "Jane",
        last_name: str = "Doe",
        email: str | None = "jane@example.test",
        phone: str | None = "+15551234567",
        remaining: float | None = 482.7,
        annual_maximum: float = 1500.0,
        expires_in_days: float = 30,
        carrier: str = "Delta Dental",
    ) -> PatientModel:
        patient = PatientModel(
            practice_id=practice.id,
            first_name=first_name,
            last_name=last_name,
            email=email,
            phone=phone,
            created_at=clock.now,
            updated_at=clock.now,
        )
        db_session.add(patient)
        await db_session.flush()

        if remaining is not None:
            db_session.add(
                PatientInsuranceModel(
                    patient_id=patient.id,
                    insurance_carrier=carrier,
                    annual_maximum=annual_maximum,
                    used_benefits=annual_maximum - remaining,
                    remaining_benefits=remaining,
                    expiration_date=clock.now + timedelta(days=expires_in_days),
                    created_at=clock.now,
                    updated_at=clock.now,
                )
            )
        await db_session.commit()
        return patient

    return _make


@pytest.fixture
def make_campaign(db_session, clock):
    async def _make(
        practice: PracticeModel,
        *,
        steps: list[dict[str, Any]] | None = None,
        **overrides: Any,
    ) -> OutreachCampaignModel:
        fields: dict[str, Any] = {
            "practice_id": practice.id,
            "name": "Year-end benefits",
            "trigger_type": "expiring_60",
            "message_type": "sms",
            "message_template": "Hi {firstName}, you have {amount} in benefits expiring {expirationDate}.",
            "min_benefit_amount": 200,
            "is_sequence": steps is not None,
            "created_at": clock.now,
            "updated_at": clock.now,
        }
        fields.update(overrides)
        campaign = OutreachCampaignModel(**fields)
        db_session.add(campaign)
        await db_session.flush()

        for number, step in enumerate(steps or [], start=1):
            step_fields: dict[str, Any] = {
                "campaign_id": campaign.id,
                "step_number": number,
                "message_type": "sms",
                "message_template": f"Step {number}: {{firstName}}, {{amount}} left.",
                "delay_type": "fixed_days",
                "delay_value": 0,
                "created_at": clock.now,
                "updated_at": clock.now,
            }
            step_fields.update(step)
            db_session.add(CampaignStepModel(**step_fields))

        await db_session.commit()
        await db_session.refresh(campaign, attribute_names=["steps"])
        return campaign

    return _make


@pytest.fixture
def make_log(db_session, clock):
    async def _make(campaign, patient, **overrides: Any) -> OutreachLogModel:
        fields: dict[str, Any] = {
            "campaign_id": campaign.id,
            "patient_id": patient.id,
            "message_type": "sms",
            "message_content": "Earlier reminder",
            "recipient_phone": patient.phone,
            "status": "sent",
            "messaging_provider": "system",
            "created_at": clock.now,
            "updated_at": clock.now,
        }
        fields.update(overrides)
        log = OutreachLogModel(**fields)
        db_session.add(log)
        await db_session.commit()
        return log

    return _make


@pytest.fixture
def make_preferences(db_session):
    async def _make(patient, *, sms_opt_out: bool = False, email_opt_out: bool = False):
        prefs = PatientPreferencesModel(
            patient_id=patient.id,
            sms_opt_out=sms_opt_out,
            email_opt_out=email_opt_out,
        )
        db_session.add(prefs)
        await db_session.commit()
        return prefs

    return _make


# ============================================================================
# Services
# ============================================================================


class RecordingSender:
    """Sender double: records calls, fails or raises on chosen call numbers."""

    def __init__(self, fail_on=(), raise_on=(), always_fail: bool = False) -> None:
        self.calls: list[dict[str, Any]] = []
        self.fail_on = set(fail_on)
        self.raise_on = set(raise_on)
        self.always_fail = always_fail

    async def send(self, practice_id, recipient, body, metadata=None):
        from benefit_outreach.services.channel_senders import SendResult

        self.calls.append(
            {"practice_id": practice_id, "recipient": recipient, "body": body, "metadata": metadata}
        )
        number = len(self.calls)
        if number in self.raise_on:
            raise RuntimeError("provider exploded")
        if self.always_fail or number in self.fail_on:
            return SendResult(success=False, error="rejected by provider")
        return SendResult(success=True, message_id=f"msg-{number}")


@pytest.fixture
def sms_sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def email_sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def make_service(db_session, settings, clock, metrics, sms_sender, email_sender):
    from benefit_outreach.services import OutreachService

    def _make(**overrides: Any):
        kwargs: dict[str, Any] = {
            "settings": settings,
            "sms_sender": sms_sender,
            "email_sender": email_sender,
            "clock": clock,
            "metrics": metrics,
        }
        kwargs.update(overrides)
        return OutreachService(db_session, **kwargs)

    return _make


@pytest.fixture
def make_sender():
    return RecordingSender
