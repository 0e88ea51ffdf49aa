"""Provider webhook endpoints.

- POST /api/webhooks/twilio: SMS status callbacks
- POST /api/webhooks/twilio/incoming: inbound SMS (replies, STOP)
- POST /api/webhooks/sendgrid: SendGrid event batches
- GET /unsubscribe: email unsubscribe link

Signature verification belongs in front of these routes at deployment.
"""
from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, Request, Response
from fastapi.responses import HTMLResponse

from benefit_outreach.core.log_setup import get_logger
from benefit_outreach.db.models import Channel
from benefit_outreach.dependencies import DeliveryEventsDep

log = get_logger(__name__)

router = APIRouter(tags=["webhooks"])

EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?>\n<Response></Response>'


@router.post("/api/webhooks/twilio")
async def twilio_status_webhook(request: Request, events: DeliveryEventsDep) -> dict[str, Any]:
    """Twilio message status callback.

    Expected form parameters: MessageSid, MessageStatus, To, ErrorCode,
    ErrorMessage.
    """
    form_data = await request.form()
    data = {key: str(value) for key, value in form_data.items()}
    applied = await events.handle_twilio_status(data)
    return {"success": True, "applied": applied}


@router.post("/api/webhooks/twilio/incoming")
async def twilio_inbound_webhook(
    request: Request,
    events: DeliveryEventsDep,
    practice_id: UUID | None = Query(default=None),
) -> Response:
    """Inbound SMS. Always answers with empty TwiML."""
    form_data = await request.form()
    data = {key: str(value) for key, value in form_data.items()}
    action = await events.handle_twilio_inbound(data, practice_id)
    log.info("Inbound SMS handled", action=action, message_sid=data.get("MessageSid", ""))
    return Response(content=EMPTY_TWIML, media_type="application/xml")


@router.post("/api/webhooks/sendgrid")
async def sendgrid_webhook(request: Request, events: DeliveryEventsDep) -> dict[str, Any]:
    """SendGrid event webhook (JSON array of events)."""
    payload = await request.json()
    if isinstance(payload, dict):
        payload = [payload]
    if not isinstance(payload, list):
        raise HTTPException(status_code=400, detail="Expected a list of events")
    counts = await events.handle_sendgrid_events(payload)
    return {"success": True, **counts}


@router.get("/unsubscribe", response_class=HTMLResponse)
async def unsubscribe(
    events: DeliveryEventsDep,
    patient: str = Query(...),
    channel: Channel = Query(default=Channel.EMAIL),
) -> HTMLResponse:
    try:
        patient_id = UUID(patient)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid unsubscribe link")

    if not await events.unsubscribe(patient_id, channel):
        raise HTTPException(status_code=404, detail="Unsubscribe link is no longer valid")

    label = "email" if channel == Channel.EMAIL else "text message"
    return HTMLResponse(
        "<html><body style=\"font-family: Arial, sans-serif; text-align: center; padding: 40px;\">"
        "<h2>You have been unsubscribed</h2>"
        f"<p>You will no longer receive benefit reminders by {label}.</p>"
        "</body></html>"
    )
