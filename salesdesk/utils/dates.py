from datetime import date, datetime, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta

from ..core.errors import DomainError, ErrorKind


def add_months(value: date, months: int) -> date:
    """Same day ``months`` later, clamped to the last day of a shorter month."""
    return value + relativedelta(months=months)


def days_between(start: date, end: date) -> int:
    return (end - start).days


def parse_iso(value: Any, field: str = "date") -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise DomainError(ErrorKind.VALIDATION, f"{field} must be an ISO date", {"field": field})
    text = value.strip()
    try:
        if len(text) == 10:
            return date.fromisoformat(text)
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        raise DomainError(ErrorKind.VALIDATION, f"{field} must be an ISO date", {"field": field, "value": value}) from None


def parse_optional_date(value: Any, field: str = "date") -> Optional[date]:
    if value in (None, ""):
        return None
    return parse_iso(value, field)


def format_display(value: Optional[date], locale: str = "en") -> str:
    """DD/MM/YYYY for both locales; documents keep western digits."""
    if value is None:
        return ""
    if isinstance(value, datetime):
        value = value.date()
    return value.strftime("%d/%m/%Y")


def month_offset_between(base: date, due: date) -> int:
    """Whole months from ``base`` to ``due``; a due day before the base day counts one month less."""
    months = (due.year - base.year) * 12 + (due.month - base.month)
    if due.day < base.day:
        months -= 1
    return months


def local_timestamp(now_utc: datetime, tz_name: str = "Africa/Cairo") -> str:
    if now_utc.tzinfo is None:
        now_utc = now_utc.replace(tzinfo=timezone.utc)
    return now_utc.astimezone(ZoneInfo(tz_name)).strftime("%d-%m-%Y %H:%M:%S")
