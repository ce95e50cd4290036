"""
Unit tests for week key resolution.
"""

from datetime import date, datetime

import pytest

from studytrail.trail.models import DayId
from studytrail.trail.week_keys import (
    canonical_week_key,
    current_week_key,
    day_id_for,
    is_current_week,
    parse_week_key,
    shift_week,
    week_dates,
)


class TestCanonicalWeekKey:
    @pytest.mark.parametrize(
        "value",
        ["2024-01-01", "2024-01-03", "2024-01-07", date(2024, 1, 5), datetime(2024, 1, 7, 23, 59)],
    )
    def test_any_day_maps_to_monday(self, value):
        assert canonical_week_key(value) == "2024-01-01"

    def test_sunday_belongs_to_the_week_before_monday(self):
        assert canonical_week_key("2024-01-07") == "2024-01-01"
        assert canonical_week_key("2024-01-08") == "2024-01-08"

    def test_year_boundary(self):
        assert canonical_week_key("2025-01-01") == "2024-12-30"

    def test_invalid_string_raises(self):
        with pytest.raises(ValueError):
            canonical_week_key("next tuesday")


class TestWeekNavigation:
    def test_shift_forward_and_back(self):
        assert shift_week("2024-01-01", 1) == "2024-01-08"
        assert shift_week("2024-01-01", -1) == "2023-12-25"

    def test_parse_rejects_non_monday(self):
        with pytest.raises(ValueError):
            parse_week_key("2024-01-03")

    def test_current_week(self):
        assert current_week_key(date(2024, 1, 4)) == "2024-01-01"
        assert is_current_week("2024-01-01", today=date(2024, 1, 7))
        assert not is_current_week("2024-01-08", today=date(2024, 1, 7))

    def test_day_id_for(self):
        assert day_id_for("2024-01-01") == DayId.MON
        assert day_id_for(date(2024, 1, 7)) == DayId.SUN

    def test_week_dates(self):
        dates = week_dates("2024-01-01")
        assert dates[DayId.MON] == date(2024, 1, 1)
        assert dates[DayId.SUN] == date(2024, 1, 7)
        assert len(dates) == 7
