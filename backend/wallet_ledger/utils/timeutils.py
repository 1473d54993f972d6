"""
Time helpers — naive-UTC storage timestamps and quota-window boundaries.
"""
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Current time as naive UTC (the storage convention for every table)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _local(now: Optional[datetime], tz_name: str) -> datetime:
    now = now or utcnow()
    return now.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(tz_name))


def _to_naive_utc(local_dt: datetime) -> datetime:
    return local_dt.astimezone(timezone.utc).replace(tzinfo=None)


def start_of_day(tz_name: str, now: Optional[datetime] = None) -> datetime:
    """00:00:00.000 of the local calendar day containing ``now``, as naive UTC."""
    local = _local(now, tz_name)
    return _to_naive_utc(local.replace(hour=0, minute=0, second=0, microsecond=0))


def start_of_month(tz_name: str, now: Optional[datetime] = None) -> datetime:
    """First instant of the local calendar month containing ``now``, as naive UTC."""
    local = _local(now, tz_name)
    return _to_naive_utc(local.replace(day=1, hour=0, minute=0, second=0, microsecond=0))


def parse_gateway_timestamp(value, tz_name: str) -> Optional[datetime]:
    """Parse an M-Pesa ``TransactionDate`` into naive UTC.

    Accepts the gateway's ``YYYYMMDDHHMMSS`` (as int or str, local time in
    ``tz_name``) or an ISO-8601 string. Unparseable input returns None.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if text.isdigit() and len(text) == 14:
        try:
            local = datetime.strptime(text, "%Y%m%d%H%M%S").replace(tzinfo=ZoneInfo(tz_name))
        except ValueError:
            return None
        return _to_naive_utc(local)
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed
    return _to_naive_utc(parsed)
