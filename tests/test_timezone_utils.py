"""
Tests de utilidades de calendario por zona horaria
"""
from datetime import date, datetime, timezone

import pytest

from pillmind.core.exceptions import ScheduleValidationError
from pillmind.core.timezone_utils import (
    add_days_in_zone,
    get_zone,
    local_date_in_zone,
    local_time_to_utc,
    normalize_time_of_day,
    parse_time_of_day,
    resolve_local,
    start_of_date_in_zone,
    start_of_day_in_zone,
    weekday_in_zone,
)
from pillmind.models.schedule import Weekday


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestTimeOfDay:
    @pytest.mark.parametrize("value,expected", [
        ("08:00", (8, 0)),
        ("8:05", (8, 5)),
        ("23:59", (23, 59)),
        ("00:00", (0, 0)),
    ])
    def test_valid(self, value, expected):
        assert parse_time_of_day(value) == expected

    @pytest.mark.parametrize("value", ["24:00", "12:60", "noon", "", "8", None])
    def test_invalid(self, value):
        with pytest.raises(ScheduleValidationError):
            parse_time_of_day(value)

    def test_normalize_pads_hour(self):
        assert normalize_time_of_day("8:05") == "08:05"


class TestZones:
    def test_unknown_zone_is_validation_error(self):
        with pytest.raises(ScheduleValidationError):
            get_zone("Mars/Olympus_Mons")

    def test_validation_error_is_value_error(self):
        with pytest.raises(ValueError):
            get_zone("")

    def test_local_date_crosses_midnight(self):
        # 23:30 UTC del 1 de abril ya es 2 de abril en Madrid (UTC+2)
        assert local_date_in_zone(utc(2024, 4, 1, 23, 30), "Europe/Madrid") == date(2024, 4, 2)

    def test_weekday_in_zone(self):
        # Lunes 02:00 UTC sigue siendo domingo en Nueva York
        assert weekday_in_zone(utc(2024, 4, 1, 2, 0), "America/New_York") == Weekday.SUN
        assert weekday_in_zone(utc(2024, 4, 1, 2, 0), "UTC") == Weekday.MON

    def test_start_of_day(self):
        assert start_of_day_in_zone(utc(2024, 4, 1, 15, 0), "Europe/Madrid") == utc(2024, 3, 31, 22, 0)
        assert start_of_date_in_zone(date(2024, 1, 15), "Europe/Madrid") == utc(2024, 1, 14, 23, 0)

    def test_naive_instant_is_utc(self):
        assert local_date_in_zone(datetime(2024, 4, 1, 23, 30), "UTC") == date(2024, 4, 1)


class TestDaylightSaving:
    def test_spring_forward_gap_resolves_to_transition(self):
        # 2024-03-10 02:30 no existe en Nueva York; el reloj salta de 02:00 a 03:00 EDT
        resolved = resolve_local(datetime(2024, 3, 10, 2, 30), "America/New_York")
        assert resolved == utc(2024, 3, 10, 7, 0)

    def test_spring_forward_gap_is_deterministic(self):
        first = resolve_local(datetime(2024, 3, 10, 2, 30), "America/New_York")
        second = resolve_local(datetime(2024, 3, 10, 2, 30), "America/New_York")
        assert first == second

    def test_fall_back_uses_first_occurrence(self):
        # 01:30 ocurre dos veces el 3 de noviembre; la primera es EDT (UTC-4)
        resolved = resolve_local(datetime(2024, 11, 3, 1, 30), "America/New_York")
        assert resolved == utc(2024, 11, 3, 5, 30)

    def test_local_time_to_utc_follows_offset_change(self):
        winter = local_time_to_utc(utc(2024, 3, 30, 12), "09:00", "Europe/Madrid")
        summer = local_time_to_utc(utc(2024, 4, 1, 12), "09:00", "Europe/Madrid")
        assert winter == utc(2024, 3, 30, 8, 0)
        assert summer == utc(2024, 4, 1, 7, 0)

    def test_add_days_keeps_wall_clock_across_dst(self):
        start = utc(2024, 3, 30, 8, 0)  # 09:00 en Madrid (CET)
        later = add_days_in_zone(start, 2, "Europe/Madrid")
        assert later == utc(2024, 4, 1, 7, 0)  # 09:00 en Madrid (CEST)
