"""Benefit Outreach - insurance benefit expiry outreach for dental practices.

Tracks when patients' annual dental benefits are about to lapse and
reaches out by SMS and email, either once per campaign or through
multi-step sequences that stop when the patient books or responds.
"""

__version__ = "0.1.0"
