"""
Keystone CRM - Date ranges & date parsing

Forecast periods are half-open intervals [start, end_exclusive) computed
in the business timezone (config.LOCAL_TZ). Deal dates may be stored as
native datetimes or as legacy ISO strings (date-only or date-time), so
every reader goes through the helpers below.

Nothing in this module raises on bad input: unparseable values become None.
"""

import math
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, NamedTuple, Optional

import pytz

from config import LOCAL_TZ

DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

DEFAULT_PERIOD = "current_month"
PERIODS = (
    "current_month",
    "current_quarter",
    "next_month",
    "next_quarter",
    "current_year",
    "next_year",
)

SECONDS_PER_DAY = 24 * 60 * 60


class DateRange(NamedTuple):
    start_date: datetime
    end_date: datetime  # inclusive end, for display
    end_exclusive: datetime
    is_custom: bool = False


# ==================== PARSING ====================

def _parse_iso(value: str, naive_tz) -> Optional[datetime]:
    s = value.strip()
    if s.endswith("Z") or s.endswith("z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = naive_tz.localize(dt)
    return dt


def _split_date_only(s: str) -> Optional[date]:
    try:
        yy, mm, dd = (int(n) for n in s.split("-"))
        return date(yy, mm, dd)
    except ValueError:
        return None


def local_midnight(day: date) -> datetime:
    """Minuit local (business timezone) pour un jour calendaire"""
    return LOCAL_TZ.localize(datetime.combine(day, time.min))


def as_local(now: datetime) -> datetime:
    if now.tzinfo is None:
        return LOCAL_TZ.localize(now)
    return now.astimezone(LOCAL_TZ)


def parse_date_only(value: Any) -> Optional[datetime]:
    """
    Parse a date coming from the UI (query string).

    YYYY-MM-DD is a local calendar date (no timezone shift).
    Anything else goes through ISO parsing; naive results are local.
    """
    if not isinstance(value, str):
        return None
    s = value.strip()
    if not s:
        return None
    if DATE_ONLY_RE.match(s):
        day = _split_date_only(s)
        return local_midnight(day) if day else None
    return _parse_iso(s, LOCAL_TZ)


def parse_any_date(value: Any) -> Optional[datetime]:
    """
    Parser used by the backfill job.

    YYYY-MM-DD strings are anchored at 12:00 UTC so that a date-only value
    still renders as the same calendar day in every timezone.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        if DATE_ONLY_RE.match(s):
            day = _split_date_only(s)
            if not day:
                return None
            return datetime(day.year, day.month, day.day, 12, tzinfo=timezone.utc)
        return _parse_iso(s, pytz.utc)
    return None


def to_datetime(value: Any) -> Optional[datetime]:
    """
    Coerce a stored deal/account date to an aware datetime.

    Naive datetimes (and naive ISO strings) are UTC, as written by the driver.
    Date-only strings are UTC midnight.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str):
        s = value.strip()
        if DATE_ONLY_RE.match(s):
            day = _split_date_only(s)
            return datetime(day.year, day.month, day.day, tzinfo=timezone.utc) if day else None
        return _parse_iso(s, pytz.utc)
    return None


def to_iso_z(dt: datetime) -> str:
    """ISO string as legacy records store it: 2024-01-31T23:00:00.000Z"""
    u = dt.astimezone(timezone.utc)
    return u.strftime("%Y-%m-%dT%H:%M:%S.") + f"{u.microsecond // 1000:03d}Z"


# ==================== DAY COUNTS ====================

def days_since(value: Any, now: datetime) -> Optional[int]:
    """Jours écoulés depuis value (arrondi supérieur), None si pas de date"""
    dt = to_datetime(value)
    if dt is None:
        return None
    return math.ceil((now - dt).total_seconds() / SECONDS_PER_DAY)


def days_until(value: Any, now: datetime) -> Optional[int]:
    """Jours restants jusqu'à value (arrondi supérieur), None si pas de date"""
    dt = to_datetime(value)
    if dt is None:
        return None
    return math.ceil((dt - now).total_seconds() / SECONDS_PER_DAY)


def start_of_local_day(now: datetime) -> datetime:
    return local_midnight(as_local(now).date())


# ==================== PERIODS ====================

def _month_start(year: int, month0: int) -> datetime:
    # month0 may overflow past December (next_quarter in Q4, ...)
    year += month0 // 12
    month0 %= 12
    return local_midnight(date(year, month0 + 1, 1))


def _inclusive_end(end_exclusive: datetime) -> datetime:
    return LOCAL_TZ.normalize(end_exclusive - timedelta(milliseconds=1))


def get_forecast_range(period: Optional[str], now: datetime) -> DateRange:
    """
    Calendar range for a named period. Fiscal year = calendar year.
    Unknown keywords fall back to the current month.
    """
    local_now = as_local(now)
    y = local_now.year
    m0 = local_now.month - 1

    start_y, start_m0, end_y, end_m0 = y, m0, y, m0 + 1
    if period == "current_quarter":
        q = m0 // 3
        start_m0, end_m0 = q * 3, q * 3 + 3
    elif period == "next_month":
        start_m0, end_m0 = m0 + 1, m0 + 2
    elif period == "next_quarter":
        next_q = m0 // 3 + 1
        start_m0, end_m0 = next_q * 3, next_q * 3 + 3
    elif period == "current_year":
        start_m0, end_y, end_m0 = 0, y + 1, 0
    elif period == "next_year":
        start_y, start_m0, end_y, end_m0 = y + 1, 0, y + 2, 0

    start_date = _month_start(start_y, start_m0)
    end_exclusive = _month_start(end_y, end_m0)
    return DateRange(start_date, _inclusive_end(end_exclusive), end_exclusive, False)


def get_range_from_request(
    period: Optional[str],
    now: datetime,
    start_date_raw: Any = None,
    end_date_raw: Any = None,
) -> DateRange:
    """
    Explicit startDate/endDate win over the period when both parse.
    The end day is inclusive: end_exclusive is the following local midnight.
    """
    start_parsed = parse_date_only(start_date_raw)
    end_parsed = parse_date_only(end_date_raw)
    if start_parsed and end_parsed:
        start_day = as_local(start_parsed).date()
        end_day = as_local(end_parsed).date()
        start_date = local_midnight(start_day)
        end_exclusive = local_midnight(end_day + timedelta(days=1))
        return DateRange(start_date, _inclusive_end(end_exclusive), end_exclusive, True)

    return get_forecast_range(period, now)
