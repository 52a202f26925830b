"""
Unit tests for calibration scheduling rules.

Tests cover:
- Month arithmetic with end-of-month clamping
- Next-due derivation from the type frequency
- Status classification boundaries
- Schedule application on create/update payloads
"""

from datetime import date, datetime, timedelta

import pytest
import pytz

from equiptrack.models.models import Equipment, EquipmentType
from equiptrack.services.calibration import (
    STATUSES,
    add_months,
    apply_calibration_schedule,
    classify,
    classify_due_date,
    days_until,
    derive_next_due,
)


AS_OF = date(2024, 6, 1)


def _equipment(requires=True, next_due=None, months=12):
    eq_type = EquipmentType(name="Multimeter", requires_calibration=requires, calibration_frequency_months=months)
    equipment = Equipment(make="Fluke", model="87V", serial_number="SN-1", next_calibration_due=next_due)
    equipment.equipment_type = eq_type
    return equipment


class TestAddMonths:
    """Tests for calendar month arithmetic."""

    def test_simple_offset(self):
        assert add_months(date(2024, 1, 15), 6) == date(2024, 7, 15)

    def test_crosses_year(self):
        assert add_months(date(2024, 11, 10), 3) == date(2025, 2, 10)

    def test_clamps_to_leap_february(self):
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)

    def test_clamps_to_short_month(self):
        assert add_months(date(2023, 8, 31), 1) == date(2023, 9, 30)

    def test_twelve_months(self):
        assert add_months(date(2024, 2, 29), 12) == date(2025, 2, 28)


class TestDeriveNextDue:

    def test_six_month_frequency(self):
        """Multimeter calibrated every 6 months, last done mid-January."""
        assert derive_next_due(date(2024, 1, 15), 6) == date(2024, 7, 15)

    def test_no_last_date(self):
        assert derive_next_due(None, 6) is None

    def test_no_frequency(self):
        assert derive_next_due(date(2024, 1, 15), None) is None


class TestClassifyDueDate:
    """Boundary behaviour of the due / due_soon / ok classification."""

    @pytest.mark.parametrize(
        "offset,expected",
        [(-1, "due"), (0, "due_soon"), (30, "due_soon"), (31, "ok")],
    )
    def test_boundaries(self, offset, expected):
        status, days = classify_due_date(True, AS_OF + timedelta(days=offset), AS_OF, due_soon_days=30)
        assert status == expected
        assert days == offset

    def test_not_required_is_na(self):
        assert classify_due_date(False, AS_OF, AS_OF) == ("n/a", None)

    def test_missing_due_date_is_na(self):
        assert classify_due_date(True, None, AS_OF) == ("n/a", None)

    def test_window_is_configurable(self):
        status, _ = classify_due_date(True, AS_OF + timedelta(days=45), AS_OF, due_soon_days=60)
        assert status == "due_soon"

    def test_partial_day_rounds_up(self):
        """Midday the day before the due date still counts one day remaining."""
        tz = pytz.timezone("America/Vancouver")
        as_of = tz.localize(datetime(2024, 6, 9, 12, 0))
        assert days_until(date(2024, 6, 10), as_of) == 1

    def test_count_unaffected_by_dst_change(self):
        """Clocks spring forward on 2024-03-10 in Vancouver; the day count does not shift."""
        tz = pytz.timezone("America/Vancouver")
        as_of = tz.localize(datetime(2024, 3, 9, 23, 30))
        assert days_until(date(2024, 3, 11), as_of) == 2
        assert days_until(date(2024, 3, 11), tz.localize(datetime(2024, 3, 9, 0, 0))) == 2

    def test_aware_datetime_read_in_local_timezone(self):
        # 2024-06-10 03:00 UTC is still the evening of June 9th in Vancouver
        as_of = pytz.UTC.localize(datetime(2024, 6, 10, 3, 0))
        assert days_until(date(2024, 6, 10), as_of) == 1


class TestClassifyEquipment:

    def test_result_shape(self):
        result = classify(_equipment(next_due=AS_OF + timedelta(days=10)), AS_OF)
        assert result == {"status": "due_soon", "days_until_due": 10}

    def test_status_always_known(self):
        for equipment in (
            _equipment(requires=False, next_due=AS_OF),
            _equipment(next_due=None),
            _equipment(next_due=AS_OF - timedelta(days=5)),
            _equipment(next_due=AS_OF + timedelta(days=400)),
        ):
            assert classify(equipment, AS_OF)["status"] in STATUSES

    def test_na_when_type_does_not_require(self):
        result = classify(_equipment(requires=False, next_due=AS_OF - timedelta(days=100)), AS_OF)
        assert result == {"status": "n/a", "days_until_due": None}


class TestApplySchedule:
    """next_calibration_due derivation on create/update payloads."""

    def test_derives_from_last_date(self):
        equipment = _equipment(months=6)
        apply_calibration_schedule(equipment, equipment.equipment_type, {"last_calibration_date": date(2024, 1, 15)})
        assert equipment.next_calibration_due == date(2024, 7, 15)

    def test_explicit_due_date_wins(self):
        equipment = _equipment(months=6, next_due=date(2024, 3, 1))
        apply_calibration_schedule(
            equipment,
            equipment.equipment_type,
            {"last_calibration_date": date(2024, 1, 15), "next_calibration_due": date(2024, 3, 1)},
        )
        assert equipment.next_calibration_due == date(2024, 3, 1)

    def test_untouched_without_last_date(self):
        equipment = _equipment(months=6, next_due=date(2024, 3, 1))
        apply_calibration_schedule(equipment, equipment.equipment_type, {"notes": "moved"})
        assert equipment.next_calibration_due == date(2024, 3, 1)

    def test_type_without_frequency(self):
        equipment = _equipment(months=None)
        apply_calibration_schedule(equipment, equipment.equipment_type, {"last_calibration_date": date(2024, 1, 15)})
        assert equipment.next_calibration_due is None
