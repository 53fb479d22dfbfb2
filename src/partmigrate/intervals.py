"""
Interval granularities and the calendar arithmetic behind them.

A granularity names the width of one partition (DAILY ... YEARLY). It knows
how to truncate a date to the start of its period, how to step forward or
back by whole periods, and how to express itself as an Oracle interval
literal for ``PARTITION BY RANGE ... INTERVAL (...)``.
"""

from __future__ import annotations

import calendar
import re
from datetime import datetime, timedelta
from enum import Enum

_NUMTOYM = re.compile(r"NUMTOYMINTERVAL\s*\(\s*(\d+)\s*,\s*'(MONTH|YEAR)'\s*\)", re.IGNORECASE)
_NUMTODS = re.compile(r"NUMTODSINTERVAL\s*\(\s*(\d+)\s*,\s*'(DAY)'\s*\)", re.IGNORECASE)


def add_months(value: datetime, months: int) -> datetime:
    """
    Shift a date by whole months, clamping the day to the target month length.

    Example:
        >>> add_months(datetime(2024, 1, 31), 1)
        datetime.datetime(2024, 2, 29, 0, 0)
    """
    month_index = value.year * 12 + (value.month - 1) + months
    year, month = divmod(month_index, 12)
    day = min(value.day, calendar.monthrange(year, month + 1)[1])
    return value.replace(year=year, month=month + 1, day=day)


class IntervalGranularity(Enum):
    """
    Width of a single partition.

    The value is the keyword used in tier templates and in analyzer
    recommendations such as ``RANGE(sale_date) INTERVAL MONTHLY``.
    """

    DAILY = "DAILY"
    """One partition per calendar day."""

    WEEKLY = "WEEKLY"
    """One partition per seven days, aligned to Monday."""

    MONTHLY = "MONTHLY"
    """One partition per calendar month."""

    QUARTERLY = "QUARTERLY"
    """One partition per calendar quarter."""

    YEARLY = "YEARLY"
    """One partition per calendar year."""

    @property
    def months(self) -> int:
        """Period length in months, 0 for day-based granularities."""
        return {
            IntervalGranularity.MONTHLY: 1,
            IntervalGranularity.QUARTERLY: 3,
            IntervalGranularity.YEARLY: 12,
        }.get(self, 0)

    @property
    def days(self) -> int:
        """Period length in days, 0 for month-based granularities."""
        return {
            IntervalGranularity.DAILY: 1,
            IntervalGranularity.WEEKLY: 7,
        }.get(self, 0)

    @property
    def expression(self) -> str:
        """Oracle interval literal for this granularity."""
        if self.months:
            return f"NUMTOYMINTERVAL({self.months},'MONTH')"
        return f"NUMTODSINTERVAL({self.days},'DAY')"

    def floor(self, value: datetime) -> datetime:
        """Truncate ``value`` to the start of its period."""
        day = value.replace(hour=0, minute=0, second=0, microsecond=0)
        if self is IntervalGranularity.DAILY:
            return day
        if self is IntervalGranularity.WEEKLY:
            return day - timedelta(days=day.weekday())
        if self is IntervalGranularity.MONTHLY:
            return day.replace(day=1)
        if self is IntervalGranularity.QUARTERLY:
            return day.replace(month=((day.month - 1) // 3) * 3 + 1, day=1)
        return day.replace(month=1, day=1)

    def add(self, value: datetime, periods: int = 1) -> datetime:
        """Step ``value`` by ``periods`` whole periods (negative steps back)."""
        if self.months:
            return add_months(value, self.months * periods)
        return value + timedelta(days=self.days * periods)

    def format_name(self, period_start: datetime) -> str:
        """
        Partition name for the period starting at ``period_start``.

        Example:
            >>> IntervalGranularity.QUARTERLY.format_name(datetime(2024, 4, 1))
            'P_2024Q2'
        """
        if self is IntervalGranularity.YEARLY:
            return f"P_{period_start:%Y}"
        if self is IntervalGranularity.QUARTERLY:
            return f"P_{period_start:%Y}Q{(period_start.month - 1) // 3 + 1}"
        if self is IntervalGranularity.MONTHLY:
            return f"P_{period_start:%Y%m}"
        return f"P_{period_start:%Y%m%d}"

    @classmethod
    def parse(cls, clause: str | None) -> IntervalGranularity | None:
        """
        Recognize a keyword or an Oracle interval expression.

        Returns None for clauses that do not map to a known granularity.

        Example:
            >>> IntervalGranularity.parse("NUMTOYMINTERVAL(3,'MONTH')")
            <IntervalGranularity.QUARTERLY: 'QUARTERLY'>
        """
        if not clause:
            return None
        text = clause.strip().upper()
        try:
            return cls(text)
        except ValueError:
            pass
        match = _NUMTOYM.search(text)
        if match:
            number, unit = int(match.group(1)), match.group(2)
            months = number * 12 if unit == "YEAR" else number
            return {1: cls.MONTHLY, 3: cls.QUARTERLY, 12: cls.YEARLY}.get(months)
        match = _NUMTODS.search(text)
        if match:
            return {1: cls.DAILY, 7: cls.WEEKLY}.get(int(match.group(1)))
        return None


def interval_expression(clause: str) -> str:
    """
    Normalize a task interval clause into an Oracle interval expression.

    Keywords are translated; anything else is passed through unchanged.
    """
    granularity = IntervalGranularity.parse(clause)
    if granularity is not None and clause.strip().upper() == granularity.value:
        return granularity.expression
    return clause.strip()


__all__ = [
    "IntervalGranularity",
    "add_months",
    "interval_expression",
]
