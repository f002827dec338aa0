"""
Availability resolution.

Turns a doctor's weekly template plus date-scoped schedule exceptions into the
atomic slot windows bookable on one calendar date. The module-level functions
are pure; ``AvailabilityService`` only loads their inputs from the database.
"""
from datetime import date, datetime
from typing import Any, Iterable, List, Mapping, Optional, Tuple
from zoneinfo import ZoneInfo
import logging

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import InvalidScheduleData, NotFound
from ..models.doctor import DoctorProfile
from ..models.schedule_exception import ExceptionType, ScheduleException
from ..schemas.slots import CLOCK_TIME_PATTERN, WEEKDAYS, SlotWindow

logger = logging.getLogger(__name__)


def parse_clock_time(value: Any) -> int:
    """Convert an "HH:MM" string to minutes from midnight."""
    if not isinstance(value, str):
        raise InvalidScheduleData(f"Malformed time {value!r}, expected HH:MM")
    match = CLOCK_TIME_PATTERN.match(value.strip())
    if not match:
        raise InvalidScheduleData(f"Malformed time {value!r}, expected HH:MM")
    return int(match.group(1)) * 60 + int(match.group(2))


def format_clock_time(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def as_calendar_date(value: Any) -> date:
    """Normalize a date, datetime or ISO string to a plain calendar date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError as exc:
            raise InvalidScheduleData(f"Malformed date {value!r}, expected YYYY-MM-DD") from exc
    raise InvalidScheduleData(f"Malformed date {value!r}")


def day_name(target_date: date) -> str:
    return WEEKDAYS[target_date.weekday()]


def clinic_now() -> datetime:
    return datetime.now(ZoneInfo(settings.CLINIC_TIMEZONE))


def clinic_today() -> date:
    """Today's date on the clinic's wall clock."""
    return clinic_now().date()


def effective_slot_duration(slot_duration: Optional[int]) -> int:
    # Missing duration silently falls back to the system default
    if not slot_duration:
        return settings.DEFAULT_SLOT_DURATION_MINUTES
    if not isinstance(slot_duration, int) or slot_duration < 0:
        raise InvalidScheduleData(f"Slot duration must be a positive number of minutes, got {slot_duration!r}")
    return slot_duration


def exception_kind(exception: Any) -> ExceptionType:
    try:
        return ExceptionType(exception.exception_type)
    except ValueError as exc:
        raise InvalidScheduleData(f"Unknown schedule exception type {exception.exception_type!r}") from exc


def find_exception(exceptions: Iterable[Any], target_date: date) -> Optional[Any]:
    """Return the exception recorded for ``target_date``, if any."""
    for exception in exceptions:
        if as_calendar_date(exception.exception_date) == target_date:
            return exception
    return None


def _window_bounds(window: Any) -> Tuple[int, int]:
    if isinstance(window, Mapping):
        start, end = window.get("start_time"), window.get("end_time")
    else:
        start, end = getattr(window, "start_time", None), getattr(window, "end_time", None)
    return parse_clock_time(start), parse_clock_time(end)


def subdivide_window(start: int, end: int, slot_duration: int, buffer_minutes: int = 0) -> List[SlotWindow]:
    """
    Cut ``[start, end)`` into consecutive slots of ``slot_duration`` minutes.

    A trailing partial slot is discarded, so a window shorter than one slot
    yields nothing.
    """
    slots = []
    step = slot_duration + buffer_minutes
    current = start
    while current + slot_duration <= end:
        slots.append(
            SlotWindow(
                start_time=format_clock_time(current),
                end_time=format_clock_time(current + slot_duration),
            )
        )
        current += step
    return slots


def raw_windows_for_day(
    weekly_availability: Optional[Mapping[str, Any]],
    exception: Optional[Any],
    target_date: date,
) -> List[Any]:
    """Pick the unsubdivided windows in force on ``target_date``."""
    if exception is not None:
        kind = exception_kind(exception)
        if kind in (ExceptionType.HOLIDAY, ExceptionType.LEAVE):
            return []
        # Override replaces the weekly template for this date
        return list(exception.slots or [])

    day_entry = (weekly_availability or {}).get(day_name(target_date))
    if not day_entry:
        return []
    if isinstance(day_entry, Mapping):
        is_available, windows = day_entry.get("is_available", True), day_entry.get("slots") or []
    else:
        is_available, windows = day_entry.is_available, day_entry.slots or []
    if not is_available:
        return []
    return list(windows)


def resolve_day(
    weekly_availability: Optional[Mapping[str, Any]],
    exceptions: Iterable[Any],
    slot_duration: Optional[int],
    target_date: Any,
    buffer_minutes: int = 0,
) -> List[SlotWindow]:
    """
    Resolve the bookable atomic slots for one calendar date.

    Raises InvalidScheduleData when any time string, exception type or the
    slot duration cannot be interpreted; nothing is silently skipped.
    """
    target_date = as_calendar_date(target_date)
    duration = effective_slot_duration(slot_duration)
    if buffer_minutes is None:
        buffer_minutes = 0
    if buffer_minutes < 0:
        raise InvalidScheduleData(f"Buffer time cannot be negative, got {buffer_minutes!r}")

    exception = find_exception(exceptions, target_date)
    slots = []
    for window in raw_windows_for_day(weekly_availability, exception, target_date):
        start, end = _window_bounds(window)
        slots.extend(subdivide_window(start, end, duration, buffer_minutes))
    return slots


class AvailabilityService:
    def __init__(self, db: Session):
        self.db = db

    def get_doctor(self, doctor_id: int, for_update: bool = False) -> DoctorProfile:
        query = self.db.query(DoctorProfile).filter(DoctorProfile.id == doctor_id)
        if for_update:
            # Serializes writers per doctor where the backend supports row locks
            query = query.with_for_update()
        doctor = query.first()
        if not doctor:
            raise NotFound("Doctor not found")
        return doctor

    def get_doctor_for_user(self, user_id: int) -> DoctorProfile:
        doctor = self.db.query(DoctorProfile).filter(DoctorProfile.user_id == user_id).first()
        if not doctor:
            raise NotFound("Doctor profile not found. Please complete your doctor registration first.")
        return doctor

    def exceptions_between(self, doctor_id: int, start: date, end: date) -> List[ScheduleException]:
        return self.db.query(ScheduleException).filter(
            ScheduleException.doctor_id == doctor_id,
            ScheduleException.exception_date >= start,
            ScheduleException.exception_date <= end,
        ).order_by(ScheduleException.exception_date.asc()).all()

    def exception_on(self, doctor_id: int, target_date: date) -> Optional[ScheduleException]:
        return self.db.query(ScheduleException).filter(
            ScheduleException.doctor_id == doctor_id,
            ScheduleException.exception_date == target_date,
        ).first()

    def resolve(
        self,
        doctor: DoctorProfile,
        target_date: date,
        exceptions: Optional[List[ScheduleException]] = None,
    ) -> List[SlotWindow]:
        if exceptions is None:
            exception = self.exception_on(doctor.id, target_date)
            exceptions = [exception] if exception else []
        try:
            return resolve_day(
                doctor.weekly_availability,
                exceptions,
                doctor.slot_duration,
                target_date,
                buffer_minutes=doctor.buffer_time or 0,
            )
        except InvalidScheduleData as exc:
            logger.error(f"Schedule data for doctor {doctor.id} on {target_date} is invalid: {exc.message}")
            raise
