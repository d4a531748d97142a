# Overview: Decides whether a store is open on a date (and optionally at a time).

from __future__ import annotations

from datetime import date, time

from ..extensions import db
from ..models import StoreOperatingHours, StoreSpecialDay
from ..validation import ValidationError


def day_of_week(on_date: date) -> int:
    """Weekday in the schedule convention: 0 = Sunday .. 6 = Saturday."""
    return (on_date.weekday() + 1) % 7


def evaluate_availability(weekly_entry, override=None, at_time: time | None = None) -> bool:
    """
    Evaluate the applicable schedule entry: the special-day override when
    present, else the weekly row.

    - Missing entry or is_open = false: closed
    - Entry without both open_time and close_time: closed (nothing to
      confirm openness against)
    - Timed check: open only strictly between the bounds (open < t < close)
    - Date-only check: open when the entry is open and has bounds configured
    """
    entry = override if override is not None else weekly_entry
    if entry is None or not entry.is_open:
        return False
    if entry.open_time is None or entry.close_time is None:
        return False
    if at_time is None:
        return True
    return entry.open_time < at_time < entry.close_time


def get_special_day(store_id: int, on_date: date) -> StoreSpecialDay | None:
    return db.session.query(StoreSpecialDay).filter_by(
        store_id=store_id,
        date=on_date
    ).first()


def get_weekly_entry(store_id: int, on_date: date) -> StoreOperatingHours | None:
    return db.session.query(StoreOperatingHours).filter_by(
        store_id=store_id,
        day_of_week=day_of_week(on_date)
    ).first()


def is_store_open(store_id: int, on_date: date, at_time: time | None = None) -> bool:
    """
    Whether the store is open on `on_date` (at `at_time` when given).

    A special-day override for the exact date always wins over the weekly
    schedule, whether it opens or closes the store.
    """
    override = get_special_day(store_id, on_date)
    if override is not None:
        return evaluate_availability(None, override, at_time)
    return evaluate_availability(get_weekly_entry(store_id, on_date), None, at_time)


def describe_availability(store_id: int, on_date: date, at_time: time | None = None) -> dict:
    """Availability answer plus which rule decided it (for the API)."""
    override = get_special_day(store_id, on_date)
    entry = override if override is not None else get_weekly_entry(store_id, on_date)
    return {
        "store_id": store_id,
        "date": on_date.isoformat(),
        "time": at_time.strftime("%H:%M") if at_time else None,
        "is_open": evaluate_availability(entry, None, at_time),
        "rule": "special_day" if override is not None else ("weekly" if entry is not None else "none"),
        "schedule": entry.to_dict() if entry is not None else None,
    }


def set_weekly_hours(
    store_id: int,
    weekday: int,
    *,
    is_open: bool,
    open_time: time | None = None,
    close_time: time | None = None,
) -> StoreOperatingHours:
    """Create or replace the weekly entry for one weekday (0 = Sunday)."""
    if weekday < 0 or weekday > 6:
        raise ValidationError("day_of_week must be between 0 (Sunday) and 6 (Saturday)")
    if open_time and close_time and open_time >= close_time:
        raise ValidationError("open_time must be before close_time")

    entry = db.session.query(StoreOperatingHours).filter_by(
        store_id=store_id,
        day_of_week=weekday
    ).first()
    if entry is None:
        entry = StoreOperatingHours(store_id=store_id, day_of_week=weekday)
        db.session.add(entry)

    entry.is_open = is_open
    entry.open_time = open_time
    entry.close_time = close_time
    db.session.commit()
    return entry


def set_special_day(
    store_id: int,
    on_date: date,
    *,
    is_open: bool,
    open_time: time | None = None,
    close_time: time | None = None,
) -> StoreSpecialDay:
    """Create or replace the override for one date."""
    if open_time and close_time and open_time >= close_time:
        raise ValidationError("open_time must be before close_time")

    entry = get_special_day(store_id, on_date)
    if entry is None:
        entry = StoreSpecialDay(store_id=store_id, date=on_date)
        db.session.add(entry)

    entry.is_open = is_open
    entry.open_time = open_time
    entry.close_time = close_time
    db.session.commit()
    return entry
