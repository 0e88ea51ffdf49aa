"""Tests for the HTTP API."""

from __future__ import annotations

from uuid import uuid4

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select

from benefit_outreach.db.models import PatientPreferencesModel
from benefit_outreach.db.session import get_db
from benefit_outreach.dependencies import (
    CacheDep,
    GuardDep,
    SessionDep,
    get_app_settings,
    get_outreach_service,
)
from benefit_outreach.main import create_app
from benefit_outreach.services.outreach_service import OutreachService


@pytest_asyncio.fixture
async def client(db_session, settings, clock, metrics):
    app = create_app(settings)

    async def override_db():
        yield db_session

    def override_service(session: SessionDep, cache: CacheDep, guard: GuardDep) -> OutreachService:
        return OutreachService(session, settings, cache=cache, guard=guard, clock=clock, metrics=metrics)

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_outreach_service] = override_service
    app.dependency_overrides[get_app_settings] = lambda: settings

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def practice_url(practice, path: str) -> str:
    return f"/api/v1/practices/{practice.id}{path}"


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["environment"] == "test"
        assert data["checks"] == {"api": "ok", "database": "ok", "scheduler": "disabled"}


class TestOutreachEndpoints:
    @pytest.mark.asyncio
    async def test_manual_send(self, client, make_practice, make_patient, make_campaign):
        practice = await make_practice()
        patient = await make_patient(practice)
        campaign = await make_campaign(practice)

        response = await client.post(
            practice_url(practice, "/outreach/send"),
            json={"patient_id": str(patient.id), "campaign_id": str(campaign.id)},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["simulated"] is True
        assert data["message_id"].startswith("mock_sms_")

    @pytest.mark.asyncio
    async def test_manual_send_unknown_campaign(self, client, make_practice, make_patient):
        practice = await make_practice()
        patient = await make_patient(practice)

        response = await client.post(
            practice_url(practice, "/outreach/send"),
            json={"patient_id": str(patient.id), "campaign_id": str(uuid4())},
        )

        assert response.json() == {
            "success": False,
            "message_id": None,
            "error": "Campaign not found",
            "provider": "system",
            "simulated": False,
        }

    @pytest.mark.asyncio
    async def test_invalid_body(self, client, make_practice):
        practice = await make_practice()

        response = await client.post(practice_url(practice, "/outreach/send"), json={"patient_id": "nope"})

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_process_outreach_for_unknown_practice(self, client):
        response = await client.post(f"/api/v1/practices/{uuid4()}/outreach/process")

        assert response.status_code == 200
        assert response.json() == {"sent": 0, "failed": 0, "skipped": 0}

    @pytest.mark.asyncio
    async def test_enroll_and_duplicate(self, client, make_practice, make_patient, make_campaign):
        practice = await make_practice()
        patient = await make_patient(practice)
        campaign = await make_campaign(practice, steps=[{}, {"delay_value": 3}])
        url = practice_url(practice, f"/campaigns/{campaign.id}/enroll")

        first = await client.post(url, json={"patient_id": str(patient.id)})
        second = await client.post(url, json={"patient_id": str(patient.id)})

        assert first.status_code == 201
        assert first.json()["status"] == "active"
        assert first.json()["current_step_number"] == 0
        assert second.status_code == 409
        assert second.json()["error"] == "DUPLICATE_ENROLLMENT"

    @pytest.mark.asyncio
    async def test_enroll_unknown_campaign(self, client, make_practice, make_patient):
        practice = await make_practice()
        patient = await make_patient(practice)

        response = await client.post(
            practice_url(practice, f"/campaigns/{uuid4()}/enroll"),
            json={"patient_id": str(patient.id)},
        )

        assert response.status_code == 404
        assert response.json()["error"] == "CAMPAIGN_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_enroll_non_sequence(self, client, make_practice, make_patient, make_campaign):
        practice = await make_practice()
        patient = await make_patient(practice)
        campaign = await make_campaign(practice)

        response = await client.post(
            practice_url(practice, f"/campaigns/{campaign.id}/enroll"),
            json={"patient_id": str(patient.id)},
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Campaign is not a sequence"

    @pytest.mark.asyncio
    async def test_validate_and_invalidate_messaging(self, client, make_practice):
        practice = await make_practice()

        validate = await client.post(practice_url(practice, "/messaging/sms/validate"))
        invalidate = await client.post(practice_url(practice, "/messaging/invalidate"))

        assert validate.json() == {"is_valid": False, "error": "Invalid Twilio configuration", "provider": None}
        assert invalidate.json() == {"invalidated": 0}


class TestWebhookEndpoints:
    @pytest.mark.asyncio
    async def test_twilio_status(self, client, make_practice, make_patient, make_campaign, make_log):
        practice = await make_practice()
        patient = await make_patient(practice)
        campaign = await make_campaign(practice)
        await make_log(campaign, patient, external_id="SM100")

        response = await client.post(
            "/api/webhooks/twilio",
            data={"MessageSid": "SM100", "MessageStatus": "delivered"},
        )

        assert response.json() == {"success": True, "applied": True}

    @pytest.mark.asyncio
    async def test_inbound_stop_returns_twiml(self, client, db_session, make_practice, make_patient):
        practice = await make_practice()
        patient = await make_patient(practice)

        response = await client.post(
            "/api/webhooks/twilio/incoming",
            params={"practice_id": str(practice.id)},
            data={"MessageSid": "SM1", "From": "+15551234567", "Body": "STOP"},
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/xml")
        assert "<Response></Response>" in response.text
        prefs = (
            await db_session.execute(
                select(PatientPreferencesModel).where(PatientPreferencesModel.patient_id == patient.id)
            )
        ).scalar_one()
        assert prefs.sms_opt_out is True

    @pytest.mark.asyncio
    async def test_sendgrid_batch(self, client):
        response = await client.post(
            "/api/webhooks/sendgrid",
            json=[{"event": "delivered", "sg_message_id": "unknown.filter", "timestamp": 1762171200}],
        )

        assert response.json() == {
            "success": True,
            "processed": 0,
            "duplicates": 0,
            "ignored": 1,
            "errors": 0,
        }

    @pytest.mark.asyncio
    async def test_sendgrid_rejects_non_list(self, client):
        response = await client.post("/api/webhooks/sendgrid", json="delivered")

        assert response.status_code == 400
        assert response.json()["error"] == "bad_request"

    @pytest.mark.asyncio
    async def test_unsubscribe_link(self, client, make_practice, make_patient):
        practice = await make_practice()
        patient = await make_patient(practice)

        response = await client.get("/unsubscribe", params={"patient": str(patient.id), "channel": "email"})

        assert response.status_code == 200
        assert "You have been unsubscribed" in response.text
        assert "by email" in response.text

    @pytest.mark.asyncio
    @pytest.mark.parametrize("patient,status", [("not-a-uuid", 400), (str(uuid4()), 404)])
    async def test_bad_unsubscribe_links(self, client, patient, status):
        response = await client.get("/unsubscribe", params={"patient": patient})

        assert response.status_code == status
