"""Time helpers.

All persisted timestamps are naive UTC so that SQLite round-trips compare
cleanly with values produced here.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
