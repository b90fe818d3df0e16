# plantshop/utils/dates.py
from datetime import datetime, timezone


def utcnow() -> datetime:
    # stored datetimes are naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso8601(s):
    if not s:
        return None
    if isinstance(s, datetime):
        return s.astimezone(timezone.utc).replace(tzinfo=None) if s.tzinfo else s
    s = str(s).strip()
    # support trailing 'Z' (UTC)
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def iso(dt):
    return dt.isoformat() if dt else None


def human_date(dt) -> str:
    """e.g. 'Mon Jan 05 2026', used in coupon window messages."""
    return dt.strftime("%a %b %d %Y")
