"""Email templates for benefit outreach.

Every user-controlled field is HTML-escaped.
"""

from __future__ import annotations

from html import escape as html_escape

BENEFIT_ALERT_SUBJECT = "Your Dental Benefits Are Expiring Soon"
TEST_EMAIL_SUBJECT = "Test Email - Dentite Configuration"


def _escape(value: str) -> str:
    return html_escape(value, quote=True)


def benefit_alert_html(
    name: str,
    message: str,
    unsubscribe_url: str | None = None,
    practice_phone: str | None = None,
) -> str:
    """HTML body wrapping a personalized outreach message."""
    footer_unsubscribe = (
        f'<p><a href="{_escape(unsubscribe_url)}">Unsubscribe</a> from these notifications.</p>'
        if unsubscribe_url
        else ""
    )
    call_to_action = (
        f'<a href="tel:{_escape(practice_phone)}" class="cta">Call to Schedule</a>'
        if practice_phone
        else ""
    )

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <style>
        body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
        .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
        .header {{ background: #0066cc; color: white; padding: 20px; text-align: center; }}
        .content {{ padding: 30px 20px; background: #f9f9f9; }}
        .cta {{ display: inline-block; padding: 12px 30px; background: #0066cc; color: white; text-decoration: none; border-radius: 5px; margin-top: 20px; }}
        .footer {{ text-align: center; padding: 20px; font-size: 12px; color: #666; }}
    </style>
</head>
<body>
    <div class="container">
        <div class="header">
            <h1>Dental Benefits Alert</h1>
        </div>
        <div class="content">
            <p>Hi {_escape(name)},</p>
            <p>{_escape(message)}</p>
            <p>Don't let your benefits go to waste! Contact us today to schedule your appointment.</p>
            {call_to_action}
        </div>
        <div class="footer">
            <p>Powered by Dentite Benefits Tracker</p>
            {footer_unsubscribe}
        </div>
    </div>
</body>
</html>"""


def configuration_test_text(provider: str) -> str:
    return f"This is a test email from Dentite using {provider} SendGrid configuration."


def configuration_test_html(provider: str) -> str:
    return (
        "<p>This is a test email from Dentite using "
        f"<strong>{_escape(provider)}</strong> SendGrid configuration.</p>"
    )


def configuration_test_sms_text(provider: str) -> str:
    return f"This is a test SMS from Dentite using {provider} Twilio configuration."
