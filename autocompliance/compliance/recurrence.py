"""
Recurring schedule calculation for compliance checklists
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from dateutil.relativedelta import relativedelta

logger = logging.getLogger(__name__)


class FrequencyType(str, Enum):
    """Frequency options supported by the checklist scheduler"""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    CUSTOM = "custom"


class CustomUnit(str, Enum):
    """Step units for custom frequencies"""
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"
    YEARS = "years"


FREQUENCIES = [f.value for f in FrequencyType]
CUSTOM_UNITS = [u.value for u in CustomUnit]


def parse_due_time(value: Union[str, time, None]) -> Optional[time]:
    """Accept "HH:MM" / "HH:MM:SS" strings or time objects."""
    if value is None or value == "":
        return None
    if isinstance(value, time):
        return value.replace(tzinfo=None)
    return time.fromisoformat(str(value).strip()[:8])


@dataclass
class RecurrenceRule:
    """How often, and from when, a checklist schedule repeats"""
    frequency_type: Optional[str]
    interval_count: Optional[int] = 1
    custom_unit: Optional[str] = None
    custom_value: Optional[int] = None
    start_date: Optional[date] = None
    due_time: Optional[time] = None

    @property
    def interval(self) -> int:
        return max(1, _as_int(self.interval_count))

    @property
    def frequency(self) -> Optional[FrequencyType]:
        try:
            return FrequencyType(self.frequency_type)
        except ValueError:
            return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "frequency_type": self.frequency_type,
            "interval_count": self.interval_count,
            "custom_unit": self.custom_unit,
            "custom_value": self.custom_value,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "due_time": self.due_time.strftime("%H:%M") if self.due_time else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecurrenceRule":
        start = data.get("start_date")
        if isinstance(start, str) and start:
            start = date.fromisoformat(start[:10])
        elif isinstance(start, datetime):
            start = start.date()
        return cls(
            frequency_type=data.get("frequency_type"),
            interval_count=data.get("interval_count", 1),
            custom_unit=data.get("custom_unit"),
            custom_value=data.get("custom_value"),
            start_date=start or None,
            due_time=parse_due_time(data.get("due_time")),
        )


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


class RecurrenceCalculator:
    """Calculates the next due timestamp for a recurrence rule"""

    @staticmethod
    def first_occurrence(rule: RecurrenceRule, reference: datetime) -> Optional[datetime]:
        """Start date combined with the due time, in the reference's timezone."""
        if not rule.start_date:
            return None
        return datetime.combine(rule.start_date, rule.due_time or time(0, 0), tzinfo=reference.tzinfo)

    @staticmethod
    def resolve_step(rule: RecurrenceRule) -> Union[timedelta, relativedelta, None]:
        """Return the size of one recurrence step, or None for unknown frequencies.

        Fixed-length steps are timedeltas; month and quarter steps are
        month-based relativedeltas, which clamp the day of month instead of
        overflowing. Year steps are ``relativedelta(years=n)`` and roll a
        Feb 29 that lands in a common year over to Mar 1.
        """
        interval = rule.interval
        frequency = rule.frequency

        if frequency == FrequencyType.DAILY:
            return timedelta(days=interval)
        if frequency == FrequencyType.WEEKLY:
            return timedelta(weeks=interval)
        if frequency == FrequencyType.MONTHLY:
            return relativedelta(months=interval)
        if frequency == FrequencyType.QUARTERLY:
            return relativedelta(months=interval * 3)
        if frequency == FrequencyType.YEARLY:
            return relativedelta(years=interval)
        if frequency == FrequencyType.CUSTOM:
            unit = rule.custom_unit or CustomUnit.DAYS.value
            value = max(1, _as_int(rule.custom_value) or interval)
            if unit == CustomUnit.HOURS.value:
                return timedelta(hours=value)
            if unit == CustomUnit.WEEKS.value:
                return timedelta(weeks=value)
            if unit == CustomUnit.MONTHS.value:
                return relativedelta(months=value)
            if unit == CustomUnit.YEARS.value:
                return relativedelta(years=value)
            if unit != CustomUnit.DAYS.value:
                logger.warning("Unknown custom frequency unit %r, stepping by days", unit)
            return timedelta(days=value)
        return None

    @staticmethod
    def calculate_next_due_at(rule: RecurrenceRule, reference: datetime) -> Optional[datetime]:
        start = RecurrenceCalculator.first_occurrence(rule, reference)
        if start is None:
            return None
        if start > reference:
            return start

        step = RecurrenceCalculator.resolve_step(rule)
        if step is None:
            # Unknown frequency: no forward stepping
            logger.warning("Unknown frequency type %r, no recurrence computed", rule.frequency_type)
            return None
        if isinstance(step, timedelta):
            return RecurrenceCalculator._advance_fixed(start, step, reference)
        # relativedelta folds 12 months into a year, so the rule decides which stepping applies
        if RecurrenceCalculator._steps_by_years(rule):
            return RecurrenceCalculator._advance_yearly(start, step.years, reference)
        return RecurrenceCalculator._advance_calendar(start, step.months + step.years * 12, reference)

    @staticmethod
    def _steps_by_years(rule: RecurrenceRule) -> bool:
        if rule.frequency == FrequencyType.YEARLY:
            return True
        return rule.frequency == FrequencyType.CUSTOM and rule.custom_unit == CustomUnit.YEARS.value

    @staticmethod
    def _advance_fixed(start: datetime, step: timedelta, reference: datetime) -> datetime:
        # start and reference share tzinfo, so this is wall-clock arithmetic
        steps = (reference - start) // step + 1
        return start + step * steps

    @staticmethod
    def _advance_calendar(start: datetime, months: int, reference: datetime) -> datetime:
        candidate = start
        while candidate <= reference:
            # A clamped day of month is carried forward (Jan 31 -> Feb 29 -> Mar 29),
            # so only jump ahead once no month can clamp the day any further.
            if candidate.day <= 28:
                behind = (reference.year - candidate.year) * 12 + (reference.month - candidate.month)
                jump = behind // months - 1
                if jump > 0:
                    candidate = candidate + relativedelta(months=jump * months)
                    continue
            candidate = candidate + relativedelta(months=months)
        return candidate

    @staticmethod
    def _add_years(moment: datetime, years: int) -> datetime:
        shifted = moment + relativedelta(years=years)
        if shifted.day != moment.day:
            # Feb 29 into a common year overflows to Mar 1
            shifted = shifted + timedelta(days=1)
        return shifted

    @staticmethod
    def _advance_yearly(start: datetime, years: int, reference: datetime) -> datetime:
        candidate = start
        while candidate <= reference:
            # Only Feb 29 can roll over, so any other date jumps ahead in whole steps
            if not (candidate.month == 2 and candidate.day == 29):
                jump = (reference.year - candidate.year) // years - 1
                if jump > 0:
                    candidate = RecurrenceCalculator._add_years(candidate, jump * years)
                    continue
            candidate = RecurrenceCalculator._add_years(candidate, years)
        return candidate


def compute_next_due_at(rule: RecurrenceRule, reference: datetime) -> Optional[datetime]:
    """Next due timestamp strictly after ``reference``, or None without a start date."""
    return RecurrenceCalculator.calculate_next_due_at(rule, reference)


def preview_occurrences(rule: RecurrenceRule, reference: datetime, count: int = 5) -> List[datetime]:
    """The next ``count`` occurrences after ``reference``."""
    occurrences: List[datetime] = []
    cursor = reference
    for _ in range(max(0, count)):
        nxt = compute_next_due_at(rule, cursor)
        if nxt is None:
            break
        occurrences.append(nxt)
        cursor = nxt
    return occurrences
