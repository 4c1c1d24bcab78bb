"""
Maturity calendar for option series.

All options expire at 08:00 UTC. Maturities one or two days out are daily
options, anything further must be a Friday (weekly options), and maturities
more than 30 days out must be the last Friday of their calendar month
(monthly options). The maximum maturity is one year.
"""

import calendar
import logging
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional

from ..errors import InvalidExpiration, NotFriday, NotLastFridayOfMonth
from ..utils import utc_now

logger = logging.getLogger(__name__)

FRIDAY = 4
EXPIRY_HOUR = 8
DAILY_WINDOW_DAYS = (1, 2)
WEEKLY_WINDOW_DAYS = 30

_LABEL_PATTERN = re.compile(r"^\d\d[A-Za-z]{3}\d\d$")


def parse_label(label: str) -> date:
    """Parse a DDMMMYY label (e.g. 03NOV23) into a calendar date"""
    if not isinstance(label, str) or not _LABEL_PATTERN.match(label):
        raise InvalidExpiration(f"Invalid expiration date: {label}")
    try:
        return datetime.strptime(label, "%d%b%y").date()
    except ValueError:
        raise InvalidExpiration(f"Invalid expiration date: {label}")


def format_label(value: date) -> str:
    return value.strftime("%d%b%y").upper()


def expiry_instant(value: date) -> datetime:
    return datetime.combine(value, time(EXPIRY_HOUR), tzinfo=timezone.utc)


def to_timestamp(value: date) -> int:
    return int(expiry_instant(value).timestamp())


def add_one_year(value: date) -> date:
    try:
        return value.replace(year=value.year + 1)
    except ValueError:
        # Feb 29 -> Feb 28
        return value.replace(year=value.year + 1, day=28)


def last_friday_of_month(year: int, month: int) -> date:
    """Step back from the last day of the month to the nearest Friday"""
    last_day = date(year, month, calendar.monthrange(year, month)[1])
    return last_day - timedelta(days=(last_day.weekday() - FRIDAY) % 7)


def _iso(value: date) -> str:
    return f"{value.isoformat()}T00:00:00.000Z"


def compute_maturity(label: str, now: Optional[datetime] = None) -> int:
    """Convert an expiration label into its 08:00 UTC maturity timestamp.

    Raises:
        InvalidExpiration: unparseable, already expired, or more than one year out
        NotFriday: weekly and monthly maturities must fall on a Friday
        NotLastFridayOfMonth: maturities beyond 30 days must be monthly
    """
    expiration = parse_label(label)
    now = now or utc_now()
    today = now.date()
    days_to_expiration = (expiration - today).days

    if now >= expiry_instant(expiration):
        raise InvalidExpiration(f"Invalid expiration date: {label} is in the past")

    if expiration > add_one_year(today):
        raise InvalidExpiration(f"Invalid expiration date: {label} is more then in 1 year")

    if days_to_expiration in DAILY_WINDOW_DAYS:
        return to_timestamp(expiration)

    if expiration.weekday() != FRIDAY:
        raise NotFriday(f"{_iso(expiration)} is not Friday!")

    if days_to_expiration > WEEKLY_WINDOW_DAYS:
        if expiration != last_friday_of_month(expiration.year, expiration.month):
            raise NotLastFridayOfMonth(f"{_iso(expiration)} is not the last Friday of the month!")

    return to_timestamp(expiration)


def maturity_timestamp(label: str) -> int:
    """08:00 UTC timestamp of a label without applying the forward calendar rules"""
    return to_timestamp(parse_label(label))


def has_expired(label: str, now: Optional[datetime] = None) -> bool:
    now = now or utc_now()
    return expiry_instant(parse_label(label)) <= now


def next_year_of_maturities(now: Optional[datetime] = None) -> List[datetime]:
    """Enumerate every maturity compute_maturity accepts, in order.

    Dailies, every Friday up to 30 days out and the monthlies of the next year.
    """
    now = now or utc_now()
    today = now.date()
    horizon = add_one_year(today)

    candidates: List[date] = []
    if today.weekday() == FRIDAY and now.hour < EXPIRY_HOUR:
        candidates.append(today)

    candidates.extend(today + timedelta(days=offset) for offset in DAILY_WINDOW_DAYS)

    next_friday = today + timedelta(days=(FRIDAY - today.weekday()) % 7)
    for week in range(5):
        friday = next_friday + timedelta(weeks=week)
        if friday == today:
            continue
        if (friday - today).days <= WEEKLY_WINDOW_DAYS:
            candidates.append(friday)

    for increment in range(1, 13):
        month_index = today.month - 1 + increment
        year, month = today.year + month_index // 12, month_index % 12 + 1
        monthly = last_friday_of_month(year, month)
        if monthly <= horizon:
            candidates.append(monthly)

    maturities = sorted(set(candidates))
    logger.debug(f"Listed {len(maturities)} maturities from {today.isoformat()}")
    return [expiry_instant(value) for value in maturities]
