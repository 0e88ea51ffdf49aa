"""Message personalization.

Placeholders:
    {firstName} {lastName} {fullName} {amount} {expirationDate}
    {daysRemaining} {carrier}

Unknown placeholders are left as written.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from benefit_outreach.services.benefits_engine import BenefitRecord

DATE_FORMAT = "%m/%d/%Y"


def format_amount(value: float) -> str:
    """Whole-dollar amount, halves rounded up: 482.5 -> "$483"."""
    rounded = Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return f"${rounded}"


def split_name(full_name: str) -> tuple[str, str]:
    parts = full_name.split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def personalize_message(template: str, benefit: BenefitRecord) -> str:
    """Substitute benefit details into a template."""
    first_name, last_name = split_name(benefit.patient_name)

    replacements = {
        "{firstName}": first_name,
        "{lastName}": last_name,
        "{fullName}": benefit.patient_name,
        "{amount}": format_amount(benefit.remaining_benefits),
        "{expirationDate}": benefit.expiration_date.strftime(DATE_FORMAT),
        "{daysRemaining}": str(benefit.days_until_expiry),
        "{carrier}": benefit.insurance_carrier,
    }

    message = template
    for placeholder, value in replacements.items():
        message = message.replace(placeholder, value)
    return message
