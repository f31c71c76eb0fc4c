"""Tests for the cron evaluator."""

from __future__ import annotations

from datetime import UTC, datetime
from zoneinfo import ZoneInfo

import pytest

from cronspine.core.cron import (
    CronExpression,
    next_fire_after,
    parse_cron,
    previous_fire_before,
    validate_cron,
)
from cronspine.core.errors import SchedulingError


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


class TestNextFireAfter:
    """Forward evaluation."""

    def test_every_five_minutes(self):
        assert next_fire_after("0 */5 * * * ?", utc(2026, 1, 5, 10, 2, 30)) == utc(2026, 1, 5, 10, 5)

    def test_strictly_after_reference(self):
        """A reference instant that is itself a fire instant is not returned."""
        assert next_fire_after("0 */5 * * * ?", utc(2026, 1, 5, 10, 5)) == utc(2026, 1, 5, 10, 10)

    def test_sub_second_reference(self):
        assert next_fire_after("0 */5 * * * ?", utc(2026, 1, 5, 10, 4, 59, 999999)) == utc(2026, 1, 5, 10, 5)

    def test_deterministic(self):
        ref = utc(2026, 3, 14, 15, 9, 26)
        assert next_fire_after("*/7 * * * * ?", ref) == next_fire_after("*/7 * * * * ?", ref)

    def test_rolls_over_year(self):
        assert next_fire_after("0 0 0 1 1 ?", utc(2026, 6, 1)) == utc(2027, 1, 1)

    def test_month_names_and_lists(self):
        expr = "0 0 6 1 JAN,JUL ?"
        assert next_fire_after(expr, utc(2026, 2, 1)) == utc(2026, 7, 1, 6)

    def test_weekday_names_range(self):
        # Saturday -> next Monday
        assert next_fire_after("0 0 12 ? * MON-FRI", utc(2026, 1, 10, 8)) == utc(2026, 1, 12, 12)

    def test_numeric_day_of_week_sunday_is_one(self):
        assert next_fire_after("0 0 0 ? * 1", utc(2026, 1, 5)) == utc(2026, 1, 11)

    def test_star_day_of_month_with_restricted_weekday(self):
        """``*`` next to a restricted day-of-week behaves like ``?``."""
        assert next_fire_after("0 0 12 * * MON", utc(2026, 1, 6)) == utc(2026, 1, 12, 12)

    def test_wrapping_hour_range(self):
        expr = CronExpression("0 0 22-2 * * ?")
        assert expr.hours == (0, 1, 2, 22, 23)

    def test_range_with_step(self):
        expr = CronExpression("0 10-30/10 * * * ?")
        assert expr.minutes == (10, 20, 30)

    def test_value_with_step(self):
        expr = CronExpression("15/20 * * * * ?")
        assert expr.seconds == (15, 35, 55)


class TestSpecialDayRules:
    """L, W and # modifiers (calendar: 2026-01-01 is a Thursday)."""

    def test_last_day_of_month(self):
        assert next_fire_after("0 0 0 L * ?", utc(2026, 2, 10)) == utc(2026, 2, 28)

    def test_last_day_offset(self):
        assert next_fire_after("0 0 0 L-2 * ?", utc(2026, 2, 10)) == utc(2026, 2, 26)

    def test_nearest_weekday_saturday_moves_to_friday(self):
        # 2026-08-15 is a Saturday
        assert next_fire_after("0 0 0 15W * ?", utc(2026, 8, 1)) == utc(2026, 8, 14)

    def test_nearest_weekday_does_not_leave_month(self):
        # 2026-08-01 is a Saturday: 1W is Monday the 3rd, not Friday July 31st
        assert next_fire_after("0 0 0 1W * ?", utc(2026, 7, 31, 12)) == utc(2026, 8, 3)

    def test_last_weekday_of_month(self):
        # 2026-01-31 is a Saturday
        assert next_fire_after("0 0 0 LW * ?", utc(2026, 1, 1)) == utc(2026, 1, 30)

    def test_nth_weekday(self):
        # Third Friday of January 2026
        assert next_fire_after("0 0 0 ? * 6#3", utc(2026, 1, 1)) == utc(2026, 1, 16)

    def test_last_given_weekday(self):
        # Last Friday of January 2026
        assert next_fire_after("0 0 0 ? * 6L", utc(2026, 1, 1)) == utc(2026, 1, 30)

    def test_fifth_occurrence_skips_short_months(self):
        # February 2026 has only four Mondays
        result = next_fire_after("0 0 0 ? * MON#5", utc(2026, 2, 1))
        assert result == utc(2026, 3, 30)


class TestYearsAndExhaustion:
    def test_year_field(self):
        assert next_fire_after("0 0 0 1 1 ? 2027", utc(2026, 5, 1)) == utc(2027, 1, 1)

    def test_exhausted_expression_returns_none(self):
        assert next_fire_after("0 0 0 1 1 ? 2027", utc(2027, 1, 1)) is None

    def test_year_in_the_past(self):
        assert next_fire_after("0 0 0 * * ? 2020", utc(2026, 1, 1)) is None


class TestPreviousFireBefore:
    def test_inverse_of_next(self):
        assert previous_fire_before("0 */5 * * * ?", utc(2026, 1, 5, 10, 7)) == utc(2026, 1, 5, 10, 5)

    def test_strictly_before_reference(self):
        assert previous_fire_before("0 */5 * * * ?", utc(2026, 1, 5, 10, 5)) == utc(2026, 1, 5, 10, 0)

    def test_microsecond_after_instant_returns_instant(self):
        ref = datetime(2026, 1, 5, 10, 5, 0, 1, tzinfo=UTC)
        assert previous_fire_before("0 */5 * * * ?", ref) == utc(2026, 1, 5, 10, 5)

    def test_across_month_boundary(self):
        assert previous_fire_before("0 0 0 L * ?", utc(2026, 3, 15)) == utc(2026, 2, 28)

    def test_nothing_before_first_year(self):
        assert previous_fire_before("0 0 0 1 1 ? 2030", utc(2026, 1, 1)) is None


class TestTimeZones:
    """Wall-clock evaluation in a zone with DST (US 2026: Mar 8 / Nov 1)."""

    NY = ZoneInfo("America/New_York")

    def test_results_are_utc(self):
        result = next_fire_after("0 0 9 * * ?", utc(2026, 1, 5, 12), self.NY)
        assert result == utc(2026, 1, 5, 14)
        assert result.tzinfo == UTC

    def test_gap_wall_time_is_skipped(self):
        # 02:30 does not exist on 2026-03-08 in New York
        result = next_fire_after("0 30 2 * * ?", utc(2026, 3, 7, 8), self.NY)
        assert result == utc(2026, 3, 9, 6, 30)

    def test_fold_wall_time_fires_once_at_first_occurrence(self):
        first = next_fire_after("0 30 1 * * ?", utc(2026, 11, 1, 4), self.NY)
        assert first == utc(2026, 11, 1, 5, 30)  # 01:30 EDT
        second = next_fire_after("0 30 1 * * ?", first, self.NY)
        assert second == utc(2026, 11, 2, 6, 30)  # next day, 01:30 EST


class TestValidation:
    @pytest.mark.parametrize(
        "expression",
        [
            "bogus",
            "* * * * *",
            "61 * * * * ?",
            "0 60 * * * ?",
            "0 0 24 * * ?",
            "0 0 0 32 * ?",
            "0 0 0 1 13 ?",
            "0 0 0 ? * 8",
            "0 0 0 1 * MON",
            "0 0 0 ? * ?",
            "0 0 0 1 1 ? 1969",
            "0 */0 * * * ?",
            "0 0 0 ? * MON#6",
            "0 0 0 1,,2 * ?",
        ],
    )
    def test_invalid_expressions_raise(self, expression):
        with pytest.raises(SchedulingError):
            validate_cron(expression)

    def test_error_names_the_expression(self):
        with pytest.raises(SchedulingError, match="61 \\* \\* \\* \\* \\?"):
            CronExpression("61 * * * * ?")

    def test_lowercase_names_accepted(self):
        validate_cron("0 0 12 ? jan mon-fri")

    def test_parse_cron_is_cached(self):
        assert parse_cron("0 */5 * * * ?") is parse_cron("0 */5 * * * ?")

    def test_matches(self):
        expr = CronExpression("0 */5 * * * ?")
        assert expr.matches(utc(2026, 1, 5, 10, 5))
        assert not expr.matches(utc(2026, 1, 5, 10, 6))
