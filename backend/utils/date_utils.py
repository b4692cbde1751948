"""
Date and time utility functions for the trading platform.
Handles display formatting and the calendar arithmetic
used by credit terms and standing order schedules.
"""

from datetime import date, datetime, timedelta
from typing import Optional, Union
import calendar
import math
from dateutil.relativedelta import relativedelta

DAY_NAMES = ['Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday']


class DateUtils:
    """Date helpers shared by services."""

    @staticmethod
    def get_utc_now() -> datetime:
        """Current UTC time as a naive datetime, matching stored timestamps."""
        return datetime.utcnow()

    @staticmethod
    def format_for_display(dt: Union[date, datetime, None], format_type: str = 'date') -> str:
        """Format a date or datetime for emails, PDFs and reports."""
        if not dt:
            return ''

        formats = {
            'datetime': '%Y-%m-%d %H:%M:%S',
            'date': '%Y-%m-%d',
            'display': '%d %b %Y',
            'long': '%A, %d %B %Y',
            'month_year': '%b %Y',
        }
        return dt.strftime(formats.get(format_type, formats['date']))

    @staticmethod
    def clamp_day_of_month(year: int, month: int, day: int) -> date:
        """Build a date, pulling days past the end of the month back to its last day."""
        last_day_num = calendar.monthrange(year, month)[1]
        return date(year, month, min(max(day, 1), last_day_num))

    @staticmethod
    def add_months(value: date, months: int) -> date:
        return value + relativedelta(months=months)

    @staticmethod
    def sunday_based_weekday(value: date) -> int:
        """Weekday number with Sunday as 0 and Saturday as 6."""
        return (value.weekday() + 1) % 7

    @staticmethod
    def next_weekday_after(from_date: date, day_of_week: int) -> date:
        """First date strictly after from_date falling on day_of_week (0 = Sunday)."""
        days_ahead = (day_of_week - DateUtils.sunday_based_weekday(from_date)) % 7
        if days_ahead == 0:
            days_ahead = 7
        return from_date + timedelta(days=days_ahead)

    @staticmethod
    def next_month_day_after(from_date: date, day_of_month: int) -> date:
        """First date strictly after from_date on day_of_month, clamped to month length."""
        candidate = DateUtils.clamp_day_of_month(from_date.year, from_date.month, day_of_month)
        if candidate > from_date:
            return candidate
        next_month = from_date + relativedelta(months=1)
        return DateUtils.clamp_day_of_month(next_month.year, next_month.month, day_of_month)

    @staticmethod
    def days_between(start: Union[date, datetime], end: Union[date, datetime]) -> float:
        """Fractional day difference end - start."""
        if isinstance(start, datetime) and isinstance(end, datetime):
            return (end - start).total_seconds() / 86400
        if isinstance(start, datetime):
            start = start.date()
        if isinstance(end, datetime):
            end = end.date()
        return float((end - start).days)

    @staticmethod
    def ceil_days_until(target: Union[date, datetime], today: Union[date, datetime]) -> int:
        return math.ceil(DateUtils.days_between(today, target))

    @staticmethod
    def get_day_of_week_label(day_of_week: Optional[int]) -> str:
        if day_of_week is None or not 0 <= day_of_week <= 6:
            return ''
        return DAY_NAMES[day_of_week]


# Convenience functions for common operations
def today() -> date:
    return DateUtils.get_utc_now().date()


def format_date(dt, fmt: str = 'date') -> str:
    """Quick date formatting."""
    return DateUtils.format_for_display(dt, fmt)
