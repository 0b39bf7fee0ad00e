"""
giftdesk/utils/dates.py
-----------------------
Timezone helpers.

Datetimes are stored as naive UTC (like every DateTime column in the app).
The business operates in APP_TIMEZONE, so "today", code date stamps,
display strings and exported timestamps use that zone.
"""
from datetime import datetime, date, time, timedelta, timezone
from zoneinfo import ZoneInfo

from flask import current_app, has_app_context


DEFAULT_TZ = 'America/Mexico_City'


def business_tz() -> ZoneInfo:
    name = DEFAULT_TZ
    if has_app_context():
        name = current_app.config.get('APP_TIMEZONE', DEFAULT_TZ)
    return ZoneInfo(name)


def utcnow() -> datetime:
    """Current time as naive UTC, for storage."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def now_local() -> datetime:
    """Current time, aware, in the business timezone."""
    return datetime.now(business_tz())


def to_local(value: datetime) -> datetime:
    """Naive-UTC (or aware) datetime → aware datetime in the business zone."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(business_tz())


def to_utc_naive(value: datetime) -> datetime:
    """Aware datetime → naive UTC. Naive input is assumed to be UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_iso(value):
    """ISO-8601 string in the business zone, or None."""
    if value is None:
        return None
    return to_local(value).isoformat()


def add_days(value: datetime, days: int) -> datetime:
    return value + timedelta(days=days)


def format_for_display(value) -> str:
    if value is None:
        return ''
    return to_local(value).strftime('%d/%m/%Y %H:%M')


def parse_datetime(raw):
    """
    Parse user/JSON input into naive UTC.

    Accepts datetime objects and ISO strings. A bare date ("2026-12-31")
    means the end of that day in the business zone. Returns None when the
    value can't be parsed.
    """
    if raw is None or raw == '':
        return None
    if isinstance(raw, datetime):
        return to_utc_naive(raw)
    if isinstance(raw, date):
        return _end_of_local_day(raw)
    if not isinstance(raw, str):
        return None

    text = raw.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    if len(text) == 10:
        try:
            return _end_of_local_day(date.fromisoformat(text))
        except ValueError:
            return None
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=business_tz())
    return to_utc_naive(parsed)


def _end_of_local_day(day: date) -> datetime:
    local = datetime.combine(day, time(23, 59, 59), tzinfo=business_tz())
    return to_utc_naive(local)


def days_until(value: datetime, now: datetime = None) -> int:
    """Whole days from now until `value` (naive UTC), rounded up."""
    now = now or utcnow()
    seconds = (value - now).total_seconds()
    return max(0, -int(-seconds // 86400))
