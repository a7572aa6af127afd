# utils/time.py
from datetime import datetime, timezone, timedelta
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def to_iso(ts: Optional[datetime]) -> Optional[str]:
    if ts is None:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.isoformat()


def parse_ts(value) -> Optional[datetime]:
    """Parse PostgREST / ISO8601 timestamps ("Z" suffix allowed) into aware datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    s = str(value).strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    ts = datetime.fromisoformat(s)
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def is_older_than(ts: Optional[datetime], seconds: float, now: Optional[datetime] = None) -> bool:
    if ts is None:
        return True
    now = now or utc_now()
    return now - ts >= timedelta(seconds=seconds)
