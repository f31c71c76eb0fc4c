"""Cron expression evaluation.

Parses Quartz-style cron expressions and computes fire instants. Pure and
deterministic: the same expression and reference instant always give the
same answer, and nothing here reads the clock.

Syntax::

    ┌──────── second        0-59
    │ ┌────── minute        0-59
    │ │ ┌──── hour          0-23
    │ │ │ ┌── day-of-month  1-31      ? * L L-n nW LW
    │ │ │ │ ┌ month         1-12      JAN-DEC
    │ │ │ │ │ ┌ day-of-week 1-7       SUN-SAT (1 = SUN)   ? * nL n#k
    │ │ │ │ │ │ ┌ year      1970-2099 (optional)
    0 */5 * * * ? [2026]

Every numeric field accepts lists (``a,b``), ranges (``a-b``, wrapping ranges
like ``22-2`` included) and steps (``*/n``, ``a/n``, ``a-b/n``). Only one of
the two day fields may be restricted; ``*`` next to a restricted day field
behaves like ``?``.

Evaluation happens in wall-clock time of the expression's zone and results
are aware UTC datetimes. Wall times inside a DST gap never fire; a wall time
inside a DST fold fires once, at its first occurrence.

Examples:
    >>> from datetime import UTC, datetime
    >>> expr = CronExpression("0 */5 * * * ?")
    >>> expr.next_fire_after(datetime(2026, 1, 1, 12, 3, tzinfo=UTC))
    datetime.datetime(2026, 1, 1, 12, 5, tzinfo=datetime.timezone.utc)
"""

from __future__ import annotations

import calendar
from bisect import bisect_left, bisect_right
from datetime import UTC, datetime, timedelta, tzinfo
from functools import lru_cache

from cronspine.core.errors import SchedulingError
from cronspine.core.timestamps import ensure_utc

MONTH_NAMES = {
    name: index
    for index, name in enumerate(
        ["JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"],
        start=1,
    )
}
DAY_NAMES = {
    name: index
    for index, name in enumerate(["SUN", "MON", "TUE", "WED", "THU", "FRI", "SAT"], start=1)
}

MIN_YEAR = 1970
MAX_YEAR = 2099

_START_OF_DAY = (0, 0, 0)
_END_OF_DAY = (23, 59, 59)


def _quartz_weekday(year: int, month: int, day: int) -> int:
    """Day-of-week in cron numbering (1 = Sunday ... 7 = Saturday)."""
    return (calendar.weekday(year, month, day) + 1) % 7 + 1


class _Field:
    """Parser for one numeric cron field."""

    def __init__(self, name: str, low: int, high: int, names: dict[str, int] | None = None):
        self.name = name
        self.low = low
        self.high = high
        self.names = names or {}

    def value(self, token: str) -> int:
        if token in self.names:
            return self.names[token]
        if not token.isdigit():
            raise SchedulingError(f"Invalid {self.name} value '{token}'")
        value = int(token)
        if not self.low <= value <= self.high:
            raise SchedulingError(
                f"{self.name} value {value} out of range {self.low}-{self.high}"
            )
        return value

    def parse(self, token: str) -> tuple[int, ...]:
        values: set[int] = set()
        for part in token.split(","):
            if not part:
                raise SchedulingError(f"Empty list item in {self.name} field '{token}'")
            values.update(self._parse_part(part))
        return tuple(sorted(values))

    def _parse_part(self, part: str) -> list[int]:
        step = 1
        base = part
        if "/" in part:
            base, step_token = part.split("/", 1)
            if not step_token.isdigit() or int(step_token) < 1:
                raise SchedulingError(f"Invalid step '{step_token}' in {self.name} field")
            step = int(step_token)

        if base in ("*", "?", ""):
            if base == "" and step == 1:
                raise SchedulingError(f"Empty {self.name} field")
            start, end = self.low, self.high
        elif "-" in base:
            start_token, end_token = base.split("-", 1)
            start, end = self.value(start_token), self.value(end_token)
        else:
            start = self.value(base)
            end = self.high if "/" in part else start

        if start <= end:
            sequence = list(range(start, end + 1))
        else:
            sequence = list(range(start, self.high + 1)) + list(range(self.low, end + 1))
        return sequence[::step]


_SECONDS = _Field("second", 0, 59)
_MINUTES = _Field("minute", 0, 59)
_HOURS = _Field("hour", 0, 23)
_DAYS_OF_MONTH = _Field("day-of-month", 1, 31)
_MONTHS = _Field("month", 1, 12, MONTH_NAMES)
_DAYS_OF_WEEK = _Field("day-of-week", 1, 7, DAY_NAMES)
_YEARS = _Field("year", MIN_YEAR, MAX_YEAR)


class _DayOfMonthRule:
    """Day-of-month matcher: value list, ``L``, ``L-n``, ``nW`` or ``LW``."""

    def __init__(self, token: str):
        self.token = token
        self.values: tuple[int, ...] = ()
        self.last_offset: int | None = None
        self.nearest_weekday: int | None = None
        self.last_weekday = False

        if token == "LW":
            self.last_weekday = True
        elif token == "L":
            self.last_offset = 0
        elif token.startswith("L-"):
            offset = token[2:]
            if not offset.isdigit() or int(offset) > 30:
                raise SchedulingError(f"Invalid day-of-month offset '{token}'")
            self.last_offset = int(offset)
        elif token.endswith("W"):
            self.nearest_weekday = _DAYS_OF_MONTH.value(token[:-1])
        else:
            self.values = _DAYS_OF_MONTH.parse(token)

    def days(self, year: int, month: int) -> set[int]:
        last = calendar.monthrange(year, month)[1]
        if self.last_weekday:
            day = last
            while _quartz_weekday(year, month, day) in (1, 7):
                day -= 1
            return {day}
        if self.last_offset is not None:
            day = last - self.last_offset
            return {day} if day >= 1 else set()
        if self.nearest_weekday is not None:
            return self._nearest_weekday(year, month, last)
        return {day for day in self.values if day <= last}

    def _nearest_weekday(self, year: int, month: int, last: int) -> set[int]:
        day = self.nearest_weekday
        if day > last:
            return set()
        weekday = _quartz_weekday(year, month, day)
        if weekday == 7:  # Saturday -> Friday, or Monday if that leaves the month
            day = day - 1 if day > 1 else day + 2
        elif weekday == 1:  # Sunday -> Monday, or Friday if that leaves the month
            day = day + 1 if day < last else day - 2
        return {day}


class _DayOfWeekRule:
    """Day-of-week matcher: value list, ``nL`` (last n of month) or ``n#k``."""

    def __init__(self, token: str):
        self.token = token
        self.values: tuple[int, ...] = ()
        self.last_of_month: int | None = None
        self.nth: tuple[int, int] | None = None

        if token == "L":
            self.last_of_month = 7
        elif token.endswith("L"):
            self.last_of_month = _DAYS_OF_WEEK.value(token[:-1])
        elif "#" in token:
            weekday_token, nth_token = token.split("#", 1)
            if not nth_token.isdigit() or not 1 <= int(nth_token) <= 5:
                raise SchedulingError(f"Invalid day-of-week occurrence '{token}'")
            self.nth = (_DAYS_OF_WEEK.value(weekday_token), int(nth_token))
        else:
            self.values = _DAYS_OF_WEEK.parse(token)

    def days(self, year: int, month: int) -> set[int]:
        last = calendar.monthrange(year, month)[1]
        first_weekday = _quartz_weekday(year, month, 1)
        if self.last_of_month is not None:
            day = last
            while _quartz_weekday(year, month, day) != self.last_of_month:
                day -= 1
            return {day}
        if self.nth is not None:
            weekday, occurrence = self.nth
            day = 1 + (weekday - first_weekday) % 7 + 7 * (occurrence - 1)
            return {day} if day <= last else set()
        return {
            day for day in range(1, last + 1)
            if (first_weekday - 1 + day - 1) % 7 + 1 in self.values
        }


class CronExpression:
    """A parsed, validated cron expression bound to an evaluation zone.

    Args:
        expression: Six or seven whitespace-separated fields
        tz: Zone whose wall clock the expression describes (default UTC)

    Raises:
        SchedulingError: If the expression is malformed
    """

    def __init__(self, expression: str, tz: tzinfo = UTC):
        self.expression = expression
        self.tz = tz

        fields = expression.upper().split()
        if len(fields) not in (6, 7):
            raise SchedulingError(
                f"Invalid cron expression '{expression}': expected 6 or 7 fields, got {len(fields)}"
            )
        second, minute, hour, day_of_month, month, day_of_week = fields[:6]
        year = fields[6] if len(fields) == 7 else "*"

        try:
            self.seconds = _SECONDS.parse(second)
            self.minutes = _MINUTES.parse(minute)
            self.hours = _HOURS.parse(hour)
            self.months = _MONTHS.parse(month)
            self.years = _YEARS.parse(year)
            self._dom, self._dow = self._parse_day_fields(day_of_month, day_of_week)
        except SchedulingError as e:
            raise SchedulingError(
                f"Invalid cron expression '{expression}': {e.message}", cause=e
            ) from e

        self._day_cache: dict[tuple[int, int], tuple[int, ...]] = {}

    @staticmethod
    def _parse_day_fields(
        day_of_month: str, day_of_week: str
    ) -> tuple[_DayOfMonthRule | None, _DayOfWeekRule | None]:
        if "?" in day_of_month and day_of_month != "?":
            raise SchedulingError("'?' must stand alone in the day-of-month field")
        if "?" in day_of_week and day_of_week != "?":
            raise SchedulingError("'?' must stand alone in the day-of-week field")
        if day_of_month == "?" and day_of_week == "?":
            raise SchedulingError("'?' may only be used in one of the day fields")

        dom_open = day_of_month in ("?", "*")
        dow_open = day_of_week in ("?", "*")
        if not dom_open and not dow_open:
            raise SchedulingError(
                "Specifying both a day-of-month and a day-of-week is not supported; "
                "use '?' in one of them"
            )
        if dom_open and dow_open:
            return None, None
        if dow_open:
            return _DayOfMonthRule(day_of_month), None
        return None, _DayOfWeekRule(day_of_week)

    def __repr__(self) -> str:
        return f"CronExpression({self.expression!r}, tz={self.tz!r})"

    def __str__(self) -> str:
        return self.expression

    # === Evaluation ===

    def next_fire_after(self, after: datetime) -> datetime | None:
        """First fire instant strictly after ``after``, or None if exhausted."""
        after_utc = ensure_utc(after)
        local = after_utc.astimezone(self.tz).replace(tzinfo=None, microsecond=0)
        candidate = self._next_wall(local + timedelta(seconds=1))
        while candidate is not None:
            instant = self._localize(candidate)
            if instant is not None and instant > after_utc:
                return instant
            candidate = self._next_wall(candidate + timedelta(seconds=1))
        return None

    def previous_fire_before(self, before: datetime) -> datetime | None:
        """Last fire instant strictly before ``before``, or None if there is none."""
        before_utc = ensure_utc(before)
        local = before_utc.astimezone(self.tz).replace(tzinfo=None)
        if local.microsecond:
            end = local.replace(microsecond=0)
        else:
            end = local - timedelta(seconds=1)
        candidate = self._previous_wall(end)
        while candidate is not None:
            instant = self._localize(candidate)
            if instant is not None and instant < before_utc:
                return instant
            candidate = self._previous_wall(candidate - timedelta(seconds=1))
        return None

    def matches(self, instant: datetime) -> bool:
        """True if ``instant`` (to the second) is a fire instant."""
        local = ensure_utc(instant).astimezone(self.tz).replace(tzinfo=None, microsecond=0)
        return self._next_wall(local) == local

    # === Wall-clock search ===

    def _localize(self, wall: datetime) -> datetime | None:
        """Naive wall time in ``tz`` → aware UTC, or None if it does not exist."""
        aware = wall.replace(tzinfo=self.tz, fold=0)
        instant = aware.astimezone(UTC)
        if instant.astimezone(self.tz).replace(tzinfo=None) != wall:
            return None
        return instant

    def _days(self, year: int, month: int) -> tuple[int, ...]:
        key = (year, month)
        cached = self._day_cache.get(key)
        if cached is None:
            if self._dom is not None:
                days = self._dom.days(year, month)
            elif self._dow is not None:
                days = self._dow.days(year, month)
            else:
                days = set(range(1, calendar.monthrange(year, month)[1] + 1))
            cached = tuple(sorted(days))
            self._day_cache[key] = cached
        return cached

    def _time_at_or_after(self, hms: tuple[int, int, int]) -> tuple[int, int, int] | None:
        h, m, s = hms
        for hour in self.hours[bisect_left(self.hours, h):]:
            first_minute = m if hour == h else 0
            for minute in self.minutes[bisect_left(self.minutes, first_minute):]:
                first_second = s if (hour, minute) == (h, m) else 0
                index = bisect_left(self.seconds, first_second)
                if index < len(self.seconds):
                    return hour, minute, self.seconds[index]
        return None

    def _time_at_or_before(self, hms: tuple[int, int, int]) -> tuple[int, int, int] | None:
        h, m, s = hms
        for hour in reversed(self.hours[:bisect_right(self.hours, h)]):
            last_minute = m if hour == h else 59
            for minute in reversed(self.minutes[:bisect_right(self.minutes, last_minute)]):
                last_second = s if (hour, minute) == (h, m) else 59
                index = bisect_right(self.seconds, last_second)
                if index > 0:
                    return hour, minute, self.seconds[index - 1]
        return None

    def _next_wall(self, start: datetime) -> datetime | None:
        year, month, day = start.year, start.month, start.day
        hms = (start.hour, start.minute, start.second)
        last_year = self.years[-1]

        while year <= last_year:
            if year not in self.years:
                index = bisect_right(self.years, year)
                if index == len(self.years):
                    return None
                year, month, day, hms = self.years[index], 1, 1, _START_OF_DAY
                continue
            if month not in self.months:
                index = bisect_right(self.months, month)
                if index == len(self.months):
                    year, month = year + 1, 1
                else:
                    month = self.months[index]
                day, hms = 1, _START_OF_DAY
                continue

            for candidate_day in self._days(year, month):
                if candidate_day < day:
                    continue
                found = self._time_at_or_after(hms if candidate_day == day else _START_OF_DAY)
                if found is not None:
                    return datetime(year, month, candidate_day, *found)

            month, day, hms = month + 1, 1, _START_OF_DAY
            if month > 12:
                year, month = year + 1, 1
        return None

    def _previous_wall(self, end: datetime) -> datetime | None:
        year, month, day = end.year, end.month, end.day
        hms = (end.hour, end.minute, end.second)
        first_year = self.years[0]

        while year >= first_year:
            if year not in self.years:
                index = bisect_left(self.years, year)
                if index == 0:
                    return None
                year, month, day, hms = self.years[index - 1], 12, 31, _END_OF_DAY
                continue
            if month not in self.months:
                index = bisect_left(self.months, month)
                if index == 0:
                    year, month = year - 1, 12
                else:
                    month = self.months[index - 1]
                day, hms = 31, _END_OF_DAY
                continue

            for candidate_day in reversed(self._days(year, month)):
                if candidate_day > day:
                    continue
                found = self._time_at_or_before(hms if candidate_day == day else _END_OF_DAY)
                if found is not None:
                    return datetime(year, month, candidate_day, *found)

            month, day, hms = month - 1, 31, _END_OF_DAY
            if month < 1:
                year, month = year - 1, 12
        return None


@lru_cache(maxsize=256)
def parse_cron(expression: str, tz: tzinfo = UTC) -> CronExpression:
    """Parse (and cache) a cron expression."""
    return CronExpression(expression, tz)


def validate_cron(expression: str) -> None:
    """Raise SchedulingError if ``expression`` is not a valid cron expression."""
    parse_cron(expression)


def next_fire_after(expression: str, after: datetime, tz: tzinfo = UTC) -> datetime | None:
    """First fire instant of ``expression`` strictly after ``after``."""
    return parse_cron(expression, tz).next_fire_after(after)


def previous_fire_before(expression: str, before: datetime, tz: tzinfo = UTC) -> datetime | None:
    """Last fire instant of ``expression`` strictly before ``before``."""
    return parse_cron(expression, tz).previous_fire_before(before)
