"""
UTC date helpers
"""

from datetime import datetime, UTC
from typing import Optional

from dateutil.relativedelta import relativedelta


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Make a datetime timezone-aware (UTC)

    SQLite drops tzinfo on read; naive values from the database are UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def add_months(start: datetime, months: int) -> datetime:
    """Calendar month arithmetic (Jan 31 + 1 month = Feb 28/29)"""
    return start + relativedelta(months=months)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None
