"""SMS integration (Twilio)."""
from benefit_outreach.integrations.sms.base import SMSGateway, SMSMessage, SMSResult, SMSStatus
from benefit_outreach.integrations.sms.twilio import (
    OPT_OUT_KEYWORDS,
    TwilioSMSGateway,
    TwilioWebhookHandler,
    create_twilio_gateway,
)

__all__ = [
    "SMSGateway",
    "SMSMessage",
    "SMSResult",
    "SMSStatus",
    "OPT_OUT_KEYWORDS",
    "TwilioSMSGateway",
    "TwilioWebhookHandler",
    "create_twilio_gateway",
]
