"""Email integration (SendGrid)."""
from benefit_outreach.integrations.email.base import (
    EmailGateway,
    EmailMessage,
    EmailResult,
    EmailStatus,
)
from benefit_outreach.integrations.email.sendgrid import (
    SendGridEmailGateway,
    SendGridWebhookHandler,
    create_sendgrid_gateway,
)

__all__ = [
    "EmailGateway",
    "EmailMessage",
    "EmailResult",
    "EmailStatus",
    "SendGridEmailGateway",
    "SendGridWebhookHandler",
    "create_sendgrid_gateway",
]
