"""Messaging provider integrations (Twilio SMS, SendGrid email)."""
