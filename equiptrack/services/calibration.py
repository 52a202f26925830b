"""
Calibration scheduling rules.
Derives next-due dates from the equipment type frequency and classifies
equipment into due / due_soon / ok / n/a.
"""
import calendar
from datetime import date, datetime
from typing import Optional, Tuple, Union

import pytz

from ..config import settings
from ..models.models import Equipment, EquipmentType


STATUS_DUE = "due"
STATUS_DUE_SOON = "due_soon"
STATUS_OK = "ok"
STATUS_NA = "n/a"
STATUSES = (STATUS_DUE, STATUS_DUE_SOON, STATUS_OK, STATUS_NA)


def add_months(start: date, months: int) -> date:
    """Add calendar months, clamping the day to the target month's length.

    2024-01-31 + 1 month -> 2024-02-29.
    """
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def derive_next_due(last_calibration: Optional[date], frequency_months: Optional[int]) -> Optional[date]:
    if last_calibration is None or not frequency_months:
        return None
    return add_months(last_calibration, frequency_months)


def today_local() -> date:
    return datetime.now(pytz.timezone(settings.tz_default)).date()


def days_until(due: date, as_of: Union[date, datetime]) -> int:
    """Whole days from ``as_of`` to ``due``, rounded up.

    Part of a day still counts as a day remaining, so for a datetime this is
    the calendar-day difference from its local date. Aware datetimes are
    read in the configured timezone; counting dates keeps DST shifts out.
    """
    if isinstance(as_of, datetime):
        if as_of.tzinfo is not None:
            as_of = as_of.astimezone(pytz.timezone(settings.tz_default))
        as_of = as_of.date()
    return (due - as_of).days


def classify_due_date(
    requires_calibration: bool,
    next_due: Optional[date],
    as_of: Union[date, datetime, None] = None,
    due_soon_days: Optional[int] = None,
) -> Tuple[str, Optional[int]]:
    """Return ``(status, days_until_due)`` for a single due date."""
    if not requires_calibration or next_due is None:
        return STATUS_NA, None
    if as_of is None:
        as_of = today_local()
    if due_soon_days is None:
        due_soon_days = settings.calibration_due_soon_days

    remaining = days_until(next_due, as_of)
    if remaining < 0:
        return STATUS_DUE, remaining
    if remaining <= due_soon_days:
        return STATUS_DUE_SOON, remaining
    return STATUS_OK, remaining


def classify(equipment: Equipment, as_of: Union[date, datetime, None] = None) -> dict:
    eq_type: Optional[EquipmentType] = equipment.equipment_type
    requires = bool(eq_type.requires_calibration) if eq_type is not None else False
    status, remaining = classify_due_date(requires, equipment.next_calibration_due, as_of)
    return {"status": status, "days_until_due": remaining}


def apply_calibration_schedule(equipment: Equipment, eq_type: EquipmentType, changes: dict) -> None:
    """Fill next_calibration_due from last_calibration_date on create/update.

    Only runs when last_calibration_date is part of ``changes`` and
    next_calibration_due is not; an explicitly supplied due date always wins.
    """
    if "last_calibration_date" not in changes or "next_calibration_due" in changes:
        return
    derived = derive_next_due(changes["last_calibration_date"], eq_type.calibration_frequency_months)
    if derived is not None:
        equipment.next_calibration_due = derived
