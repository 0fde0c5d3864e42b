"""Recurring trigger evaluation for scheduled instances"""
from datetime import datetime, time as dt_time, timedelta
from typing import List, Optional

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

INTERVAL = "interval"
HOURLY = "hourly"
EVERY_X_HOURS = "every_x_hours"
ONCE_DAILY = "once_daily"
TWICE_DAILY = "twice_daily"
WEEKLY = "weekly"

FREQUENCIES = (INTERVAL, HOURLY, EVERY_X_HOURS, ONCE_DAILY, TWICE_DAILY, WEEKLY)


def parse_time_of_day(value: Optional[str], default: str = "09:00") -> dt_time:
    """'HH:MM' -> time; malformed values fall back to the default"""
    for candidate in (value, default):
        try:
            hours, minutes = (int(part) for part in (candidate or "").split(":", 1))
            return dt_time(hour=hours, minute=minutes)
        except ValueError:
            continue
    return dt_time(hour=9)


def allowed_weekdays(days) -> Optional[set]:
    """Weekday numbers (0 = Monday) from a list of names; None means every day"""
    if not days:
        return None
    allowed = {WEEKDAYS.index(day.strip().lower()) for day in days if day and day.strip().lower() in WEEKDAYS}
    return allowed or None


def _daily_slots(times: List[dt_time], now: datetime, weekdays: Optional[set], lookback_days: int) -> Optional[datetime]:
    """Most recent slot at or before now on an allowed weekday"""
    for days_back in range(lookback_days + 1):
        day = (now - timedelta(days=days_back)).date()
        if weekdays is not None and day.weekday() not in weekdays:
            continue
        slots = [datetime.combine(day, t) for t in times if datetime.combine(day, t) <= now]
        if slots:
            return max(slots)
    return None


def latest_slot(instance, now: datetime) -> Optional[datetime]:
    """The most recent moment at or before now when the instance was meant to fire"""
    frequency = instance.schedule_frequency or ONCE_DAILY

    if frequency == HOURLY:
        return now.replace(minute=0, second=0, microsecond=0)

    if frequency == EVERY_X_HOURS:
        hours = max(instance.schedule_hours_interval or 1, 1)
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return midnight + timedelta(hours=(now.hour // hours) * hours)

    if frequency == WEEKLY:
        weekday = (instance.schedule_day_of_week or 0) % 7
        return _daily_slots([parse_time_of_day(instance.schedule_time)], now, {weekday}, lookback_days=7)

    weekdays = allowed_weekdays(instance.schedule_days)
    times = [parse_time_of_day(instance.schedule_time)]
    if frequency == TWICE_DAILY:
        times.append(parse_time_of_day(instance.schedule_time_second, "21:00"))
    return _daily_slots(times, now, weekdays, lookback_days=7)


def is_due(instance, now: datetime, grace_seconds: int = 300) -> bool:
    """
    Whether a scheduled instance should start a job now.

    Interval schedules fire once interval_minutes have passed since last_run
    (immediately if it never ran). Slot-based schedules fire when a slot has
    passed since last_run; an instance that never ran only fires within
    grace_seconds of a slot, so enabling a schedule does not trigger a run
    for a slot that passed hours ago.
    """
    if not instance.schedule_enabled:
        return False

    frequency = instance.schedule_frequency or ONCE_DAILY
    if frequency not in FREQUENCIES:
        return False

    if frequency == INTERVAL:
        minutes = instance.schedule_interval_minutes or 0
        if minutes <= 0:
            return False
        if instance.last_run is None:
            return True
        return now >= instance.last_run + timedelta(minutes=minutes)

    slot = latest_slot(instance, now)
    if slot is None:
        return False
    if instance.last_run is None:
        return (now - slot).total_seconds() <= grace_seconds
    return instance.last_run < slot
