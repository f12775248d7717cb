"""Clock used for timestamps and reset-token expiry."""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching the stored column values."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
