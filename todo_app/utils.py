from datetime import datetime, timezone
from typing import Optional


def now_utc() -> datetime:
    """Return timezone-aware current UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def iso_utc(dt: Optional[datetime]) -> Optional[str]:
    dt = ensure_aware(dt)
    return dt.isoformat() if dt is not None else None


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (accepting a trailing 'Z') into aware UTC.

    Returns None for empty or unparseable input.
    """
    if not value:
        return None
    s = str(value).strip()
    if s.endswith('Z'):
        s = s[:-1] + '+00:00'
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    return ensure_aware(dt)
