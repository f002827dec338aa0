"""
Slot allocation and booking commit.

Free slots are an advisory read: the day's resolved slots minus those that
intersect a live appointment. Bookings and reschedules re-check against fresh
data and rely on the database to settle races: the partial unique index on
(doctor_id, appointment_date, start_time) for live statuses, a row lock on the
doctor profile, and the appointment's version column.
"""
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Optional, Tuple
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..core.config import settings
from ..core.exceptions import (
    ConcurrentModification,
    IdempotencyKeyMismatch,
    InvalidStatusTransition,
    NotFound,
    PastDateBooking,
    RescheduleLimitExceeded,
    RescheduleNoticeTooShort,
    SlotAlreadyBooked,
    SlotUnavailable,
)
from ..models.appointment import (
    ALLOWED_TRANSITIONS,
    RELEASED_STATUSES,
    RESCHEDULABLE_STATUSES,
    Appointment,
    AppointmentAuditEntry,
    AppointmentStatus,
    AppointmentType,
)
from ..models.doctor import DoctorProfile
from ..models.schedule_exception import ExceptionType
from ..schemas.slots import SlotWindow
from .availability_service import (
    AvailabilityService,
    clinic_now,
    clinic_today,
    day_name,
    effective_slot_duration,
    exception_kind,
    find_exception,
    parse_clock_time,
)

logger = logging.getLogger(__name__)


def intervals_overlap(start: int, end: int, other_start: int, other_end: int) -> bool:
    """Half-open overlap test; back-to-back intervals do not conflict."""
    return start < other_end and other_start < end


def partition_slots(
    slots: Iterable[SlotWindow],
    appointments: Iterable[Appointment],
) -> Tuple[List[SlotWindow], List[SlotWindow]]:
    """Split resolved slots into (available, booked) against live appointments."""
    taken = [
        (parse_clock_time(appointment.start_time), parse_clock_time(appointment.end_time))
        for appointment in appointments
    ]
    available, booked = [], []
    for slot in slots:
        start, end = parse_clock_time(slot.start_time), parse_clock_time(slot.end_time)
        if any(intervals_overlap(start, end, taken_start, taken_end) for taken_start, taken_end in taken):
            booked.append(slot)
        else:
            available.append(slot)
    return available, booked


def split_started(slots: Iterable[SlotWindow], target_date: date) -> Tuple[List[SlotWindow], List[SlotWindow]]:
    """Split slots into (upcoming, started); only today's slots can have started."""
    now = clinic_now()
    if target_date != now.date():
        return list(slots), []
    current_minutes = now.hour * 60 + now.minute
    upcoming, started = [], []
    for slot in slots:
        (started if parse_clock_time(slot.start_time) <= current_minutes else upcoming).append(slot)
    return upcoming, started


class BookingService:
    def __init__(self, db: Session):
        self.db = db
        self.availability = AvailabilityService(db)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if not appointment:
            raise NotFound("Appointment not found")
        return appointment

    def live_appointments(
        self,
        doctor_id: int,
        start: date,
        end: Optional[date] = None,
        exclude_appointment_id: Optional[int] = None,
    ) -> List[Appointment]:
        query = self.db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.appointment_date >= start,
            Appointment.appointment_date <= (end or start),
            Appointment.status.notin_(RELEASED_STATUSES),
        )
        if exclude_appointment_id is not None:
            query = query.filter(Appointment.id != exclude_appointment_id)
        return query.order_by(Appointment.appointment_date.asc(), Appointment.start_time.asc()).all()

    def free_slots(
        self,
        doctor_id: int,
        target_date: date,
        exclude_appointment_id: Optional[int] = None,
    ) -> List[SlotWindow]:
        doctor = self.availability.get_doctor(doctor_id)
        resolved = self.availability.resolve(doctor, target_date)
        appointments = self.live_appointments(doctor.id, target_date, exclude_appointment_id=exclude_appointment_id)
        available, _ = partition_slots(resolved, appointments)
        return available

    def day_slots(self, doctor_id: int, target_date: date) -> Dict:
        """Everything the booking screen shows for one doctor and date."""
        doctor = self.availability.get_doctor(doctor_id)
        exception = self.availability.exception_on(doctor.id, target_date)
        resolved = self.availability.resolve(doctor, target_date, exceptions=[exception] if exception else [])
        available, booked = partition_slots(resolved, self.live_appointments(doctor.id, target_date))
        available, past = split_started(available, target_date)

        reason = None
        if exception is not None and exception_kind(exception) != ExceptionType.OVERRIDE:
            reason = exception.reason or f"Doctor is on {exception_kind(exception).value}"

        return {
            "doctor_id": doctor.id,
            "doctor_name": doctor.full_name,
            "date": target_date,
            "day_name": day_name(target_date),
            "is_available": bool(resolved),
            "slot_duration": effective_slot_duration(doctor.slot_duration),
            "reason": reason,
            "all_slots": resolved,
            "available_slots": available,
            "booked_slots": booked,
            "past_slots": past,
        }

    def availability_summary(self, doctor_id: int, start: Optional[date] = None) -> List[Dict]:
        """Per-day slot counts for the rolling window used by date pickers."""
        doctor = self.availability.get_doctor(doctor_id)
        start = start or clinic_today()
        end = start + timedelta(days=settings.SUMMARY_WINDOW_DAYS - 1)

        exceptions = self.availability.exceptions_between(doctor.id, start, end)
        appointments = self.live_appointments(doctor.id, start, end)

        summary = []
        current = start
        while current <= end:
            exception = find_exception(exceptions, current)
            entry = {
                "date": current,
                "day_name": day_name(current),
                "exception": exception_kind(exception).value if exception else None,
                "reason": (exception.reason or None) if exception else None,
            }
            resolved = self.availability.resolve(doctor, current, exceptions=[exception] if exception else [])
            day_appointments = [a for a in appointments if a.appointment_date == current]
            available, _ = partition_slots(resolved, day_appointments)
            entry.update(
                total_slots=len(resolved),
                available_slots=len(available),
                is_available=len(available) > 0,
            )
            summary.append(entry)
            current += timedelta(days=1)

        return summary

    def list_for_patient(self, patient_id: int, status: Optional[AppointmentStatus] = None) -> List[Appointment]:
        query = self.db.query(Appointment).filter(Appointment.patient_id == patient_id)
        if status:
            query = query.filter(Appointment.status == status)
        return query.order_by(Appointment.appointment_date.desc(), Appointment.start_time.desc()).all()

    def list_for_doctor(
        self,
        doctor_id: int,
        target_date: Optional[date] = None,
        status: Optional[AppointmentStatus] = None,
    ) -> List[Appointment]:
        query = self.db.query(Appointment).filter(Appointment.doctor_id == doctor_id)
        if target_date:
            query = query.filter(Appointment.appointment_date == target_date)
        if status:
            query = query.filter(Appointment.status == status)
        return query.order_by(Appointment.appointment_date.asc(), Appointment.start_time.asc()).all()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def book(
        self,
        doctor_id: int,
        patient_id: int,
        target_date: date,
        start_time: str,
        appointment_type: AppointmentType = AppointmentType.ONLINE,
        notes: Optional[str] = None,
        booked_by: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> Appointment:
        """Commit a booking for one atomic slot, or raise SlotAlreadyBooked."""
        if idempotency_key:
            existing = self._replayed_booking(idempotency_key, doctor_id, patient_id, target_date, start_time)
            if existing:
                logger.info(f"Returning appointment {existing.id} for replayed idempotency key")
                return existing

        if target_date < clinic_today():
            raise PastDateBooking("Cannot book for past dates")

        doctor = self.availability.get_doctor(doctor_id, for_update=True)
        slot = self._claimable_slot(doctor, target_date, start_time)

        initial_status = (
            AppointmentStatus.CONFIRMED
            if appointment_type == AppointmentType.WALK_IN
            else AppointmentStatus.BOOKED
        )
        appointment = Appointment(
            doctor_id=doctor.id,
            patient_id=patient_id,
            clinic_id=doctor.clinic_id,
            appointment_date=target_date,
            start_time=slot.start_time,
            end_time=slot.end_time,
            status=initial_status,
            appointment_type=appointment_type,
            notes=notes,
            booked_by=booked_by,
            idempotency_key=idempotency_key,
            reschedule_count=0,
        )
        self._audit(
            appointment,
            "created",
            booked_by,
            f"Appointment booked ({appointment_type.value}) for {target_date.isoformat()} at {slot.start_time}",
            new_value=initial_status.value,
        )
        self.db.add(appointment)

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            if idempotency_key:
                existing = self._replayed_booking(idempotency_key, doctor_id, patient_id, target_date, start_time)
                if existing:
                    return existing
            logger.info(f"Lost booking race for doctor {doctor_id} on {target_date} at {start_time}")
            raise SlotAlreadyBooked("This slot is already booked. Please choose another slot.")

        self.db.refresh(appointment)
        logger.info(
            f"Booked appointment {appointment.id}: doctor {doctor.id}, patient {patient_id}, "
            f"{target_date} {appointment.start_time}-{appointment.end_time}"
        )
        return appointment

    def reschedule(
        self,
        appointment_id: int,
        new_date: date,
        new_start_time: str,
        performed_by: Optional[int] = None,
        enforce_notice: bool = False,
    ) -> Appointment:
        """
        Move an appointment to another slot in one UPDATE.

        The old slot is released only if the new one is claimed; on any
        conflict the appointment is left exactly as it was. With
        ``enforce_notice`` (patient requests) the doctor's minimum notice
        before the current start time is applied.
        """
        appointment = self.get_appointment(appointment_id)
        if appointment.status not in RESCHEDULABLE_STATUSES:
            raise InvalidStatusTransition(
                f"Cannot reschedule appointment with status: {appointment.status.value}"
            )

        doctor = self.availability.get_doctor(appointment.doctor_id, for_update=True)
        max_reschedules = self._max_reschedules(doctor)
        if appointment.reschedule_count >= max_reschedules:
            raise RescheduleLimitExceeded(
                f"Maximum reschedule limit ({max_reschedules}) reached. Please cancel and book a new appointment."
            )
        if enforce_notice:
            self._check_reschedule_notice(appointment, doctor)

        if new_date < clinic_today():
            raise PastDateBooking("Cannot reschedule to a past date")

        slot = self._claimable_slot(doctor, new_date, new_start_time, exclude_appointment_id=appointment.id)

        old_value = f"{appointment.appointment_date.isoformat()} {appointment.start_time}"
        appointment.appointment_date = new_date
        appointment.start_time = slot.start_time
        appointment.end_time = slot.end_time
        appointment.reschedule_count = appointment.reschedule_count + 1
        self._audit(
            appointment,
            "rescheduled",
            performed_by,
            f"Rescheduled ({appointment.reschedule_count}/{max_reschedules})",
            old_value=old_value,
            new_value=f"{new_date.isoformat()} {slot.start_time}",
        )

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(f"Reschedule of appointment {appointment_id} lost the race for {new_date} {new_start_time}")
            raise SlotAlreadyBooked("The new slot is already booked. Please choose another slot.")
        except StaleDataError:
            self.db.rollback()
            raise ConcurrentModification("Appointment was modified concurrently. Please retry.")

        self.db.refresh(appointment)
        logger.info(f"Rescheduled appointment {appointment.id} from {old_value} to {new_date} {slot.start_time}")
        return appointment

    def cancel(self, appointment_id: int, reason: Optional[str] = None, performed_by: Optional[int] = None) -> Appointment:
        appointment = self.get_appointment(appointment_id)
        self._transition(appointment, AppointmentStatus.CANCELLED, performed_by, reason or "Cancelled by user")
        appointment.cancel_reason = reason or "Cancelled by user"
        appointment.cancelled_by = performed_by
        self._commit_update(appointment)
        logger.info(f"Cancelled appointment {appointment.id}")
        return appointment

    def update_status(
        self,
        appointment_id: int,
        new_status: AppointmentStatus,
        performed_by: Optional[int] = None,
    ) -> Appointment:
        appointment = self.get_appointment(appointment_id)
        self._transition(appointment, new_status, performed_by, "Status changed")
        self._commit_update(appointment)
        return appointment

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _claimable_slot(
        self,
        doctor: DoctorProfile,
        target_date: date,
        start_time: str,
        exclude_appointment_id: Optional[int] = None,
    ) -> SlotWindow:
        resolved = self.availability.resolve(doctor, target_date)
        slot = next((s for s in resolved if s.start_time == start_time), None)
        if slot is None:
            raise SlotUnavailable(
                f"Slot {start_time} is not available on {target_date.isoformat()} ({day_name(target_date)})."
            )
        _, started = split_started([slot], target_date)
        if started:
            raise SlotUnavailable(f"Slot {start_time} on {target_date.isoformat()} has already started.")

        appointments = self.live_appointments(doctor.id, target_date, exclude_appointment_id=exclude_appointment_id)
        available, _ = partition_slots([slot], appointments)
        if not available:
            raise SlotAlreadyBooked(f"Slot {start_time} on {target_date.isoformat()} is already booked.")
        return slot

    def _replayed_booking(
        self,
        idempotency_key: str,
        doctor_id: int,
        patient_id: int,
        target_date: date,
        start_time: str,
    ) -> Optional[Appointment]:
        existing = self.db.query(Appointment).filter(Appointment.idempotency_key == idempotency_key).first()
        if existing is None:
            return None
        mismatch = existing.doctor_id != doctor_id or existing.patient_id != patient_id
        # A rescheduled appointment no longer sits on the slot it was booked for
        if existing.reschedule_count == 0:
            mismatch = mismatch or existing.appointment_date != target_date or existing.start_time != start_time
        if mismatch:
            raise IdempotencyKeyMismatch("Idempotency key was already used for a different booking.")
        return existing

    def _check_reschedule_notice(self, appointment: Appointment, doctor: DoctorProfile) -> None:
        min_hours = doctor.min_reschedule_hours
        if min_hours is None:
            min_hours = settings.MIN_RESCHEDULE_HOURS
        now = clinic_now()
        starts_at = datetime.combine(
            appointment.appointment_date,
            time.fromisoformat(appointment.start_time),
            tzinfo=now.tzinfo,
        )
        if starts_at - now < timedelta(hours=min_hours):
            raise RescheduleNoticeTooShort(f"Cannot reschedule within {min_hours} hours of the appointment.")

    def _max_reschedules(self, doctor: DoctorProfile) -> int:
        if doctor.max_reschedules is None:
            return settings.MAX_RESCHEDULES
        return doctor.max_reschedules

    def _transition(
        self,
        appointment: Appointment,
        new_status: AppointmentStatus,
        performed_by: Optional[int],
        details: str,
    ) -> None:
        old_status = appointment.status
        allowed = ALLOWED_TRANSITIONS[old_status]
        if new_status not in allowed:
            allowed_names = ", ".join(sorted(s.value for s in allowed)) or "none (terminal state)"
            raise InvalidStatusTransition(
                f"Cannot transition from '{old_status.value}' to '{new_status.value}'. Allowed: {allowed_names}"
            )
        appointment.status = new_status
        action = "cancelled" if new_status == AppointmentStatus.CANCELLED else "status_changed"
        self._audit(appointment, action, performed_by, details, old_value=old_status.value, new_value=new_status.value)

    def _commit_update(self, appointment: Appointment) -> None:
        try:
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            raise ConcurrentModification("Appointment was modified concurrently. Please retry.")
        self.db.refresh(appointment)

    def _audit(
        self,
        appointment: Appointment,
        action: str,
        performed_by: Optional[int],
        details: str = "",
        old_value: Optional[str] = None,
        new_value: Optional[str] = None,
    ) -> None:
        appointment.audit_entries.append(
            AppointmentAuditEntry(
                action=action,
                performed_by=performed_by,
                details=details[:255],
                old_value=old_value,
                new_value=new_value,
            )
        )
