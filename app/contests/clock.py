from datetime import datetime, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    """Naive UTC, the form Motor hands back for stored dates"""
    return datetime.utcnow()


def as_utc(value: Any) -> Optional[datetime]:
    """
    Normalize a stored or submitted instant to naive UTC.
    Accepts datetimes and ISO-8601 strings; anything else gives None.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
