"""Outreach endpoints.

Thin callers of OutreachService and the messaging factory, scoped by
practice id in the path.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from benefit_outreach.core.exceptions import CampaignNotFoundError
from benefit_outreach.db.models import Channel, MessageType
from benefit_outreach.db.repositories import CampaignRepository
from benefit_outreach.dependencies import MessagingFactoryDep, OutreachServiceDep, SessionDep

router = APIRouter(prefix="/api/v1/practices/{practice_id}", tags=["outreach"])


# ============================================================================
# Request Models
# ============================================================================


class ManualSendRequest(BaseModel):
    patient_id: UUID
    campaign_id: UUID
    message_type: MessageType | None = None


class EnrollRequest(BaseModel):
    patient_id: UUID


class SendTestRequest(BaseModel):
    recipient: str = Field(..., min_length=3)


# ============================================================================
# Outreach
# ============================================================================


@router.post("/outreach/send")
async def send_manual_outreach(
    practice_id: UUID, body: ManualSendRequest, service: OutreachServiceDep
) -> dict[str, Any]:
    """Send a campaign message to one patient now."""
    result = await service.send_manual_outreach(
        body.patient_id, practice_id, body.campaign_id, body.message_type
    )
    return result.to_dict()


@router.post("/outreach/process")
async def process_outreach(practice_id: UUID, service: OutreachServiceDep) -> dict[str, int]:
    """Run the single-shot campaigns for the practice now."""
    result = await service.process_automated_outreach(practice_id)
    return result.to_dict()


@router.post("/sequences/process")
async def process_sequences(practice_id: UUID, service: OutreachServiceDep) -> dict[str, Any]:
    """Run one sequence tick for the practice now."""
    return await service.process_sequences(practice_id)


@router.post("/campaigns/{campaign_id}/enroll", status_code=status.HTTP_201_CREATED)
async def enroll_patient(
    practice_id: UUID,
    campaign_id: UUID,
    body: EnrollRequest,
    session: SessionDep,
    service: OutreachServiceDep,
) -> dict[str, Any]:
    if await CampaignRepository(session).get_for_practice(campaign_id, practice_id) is None:
        raise CampaignNotFoundError("Campaign not found", details={"campaign_id": str(campaign_id)})
    state = await service.enroll_patient_in_sequence(campaign_id, body.patient_id)
    return state.to_dict()


@router.post("/campaigns/{campaign_id}/enroll-eligible")
async def enroll_eligible(
    practice_id: UUID, campaign_id: UUID, service: OutreachServiceDep
) -> dict[str, int]:
    return await service.enroll_patients_in_sequence(campaign_id, practice_id)


# ============================================================================
# Messaging settings
# ============================================================================


@router.post("/messaging/{channel}/validate")
async def validate_messaging(
    practice_id: UUID, channel: Channel, factory: MessagingFactoryDep
) -> dict[str, Any]:
    if channel == Channel.EMAIL:
        result = await factory.validate_email_config(practice_id)
    else:
        result = await factory.validate_sms_config(practice_id)
    return result.to_dict()


@router.post("/messaging/{channel}/test")
async def send_test_message(
    practice_id: UUID,
    channel: Channel,
    body: SendTestRequest,
    factory: MessagingFactoryDep,
) -> dict[str, Any]:
    if channel == Channel.EMAIL:
        result = await factory.send_test_email(practice_id, body.recipient)
    else:
        result = await factory.send_test_sms(practice_id, body.recipient)
    return result.to_dict()


@router.post("/messaging/invalidate")
async def invalidate_messaging_cache(practice_id: UUID, factory: MessagingFactoryDep) -> dict[str, int]:
    """Drop cached gateways after the practice changed its settings."""
    return {"invalidated": factory.invalidate(practice_id)}
