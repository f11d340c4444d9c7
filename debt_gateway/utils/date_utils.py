"""Date manipulation utilities"""

from datetime import datetime, timezone

from dateutil.relativedelta import relativedelta


def add_calendar_interval(timestamp: int, amount: int, unit: str) -> int:
    """
    Add a calendar-aware interval to a UNIX timestamp (seconds, UTC).

    Months and years use calendar arithmetic: Jan 31 + 1 month is Feb 28/29,
    never a fixed 30-day approximation.
    """
    start = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    end = start + relativedelta(**{f"{unit}s": amount})
    return int(end.timestamp())
