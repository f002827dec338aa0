from datetime import timedelta
from typing import List, Optional
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import DuplicateScheduleException, Forbidden, NotFound, PastDateBooking
from ..models.doctor import DoctorProfile
from ..models.schedule_exception import ScheduleException
from ..schemas.schedule_exception import ScheduleExceptionCreate
from ..schemas.slots import AvailabilityUpdate
from .availability_service import AvailabilityService, clinic_today, effective_slot_duration

logger = logging.getLogger(__name__)


class ScheduleService:
    """Doctor-owned schedule data: the weekly template and date exceptions."""

    def __init__(self, db: Session):
        self.db = db
        self.availability = AvailabilityService(db)

    def get_availability(self, doctor_id: int) -> dict:
        doctor = self.availability.get_doctor(doctor_id)
        return self._availability_view(doctor)

    def update_availability(self, doctor: DoctorProfile, update: AvailabilityUpdate) -> dict:
        """
        Replace the doctor's weekly template.

        Existing appointments keep the end time fixed when they were booked, so
        a new slot duration only affects slots resolved from now on.
        """
        doctor.weekly_availability = {
            day: availability.model_dump() for day, availability in update.weekly_availability.items()
        }
        if update.slot_duration is not None:
            doctor.slot_duration = update.slot_duration
        if update.buffer_time is not None:
            doctor.buffer_time = update.buffer_time
        if update.max_reschedules is not None:
            doctor.max_reschedules = update.max_reschedules
        if update.min_reschedule_hours is not None:
            doctor.min_reschedule_hours = update.min_reschedule_hours

        self.db.commit()
        self.db.refresh(doctor)
        logger.info(f"Updated weekly availability for doctor {doctor.id}")
        return self._availability_view(doctor)

    def create_exception(
        self,
        doctor: DoctorProfile,
        data: ScheduleExceptionCreate,
        created_by: Optional[int] = None,
    ) -> ScheduleException:
        if data.date < clinic_today():
            raise PastDateBooking("Cannot add exceptions for past dates")

        if self.availability.exception_on(doctor.id, data.date):
            raise DuplicateScheduleException("An exception already exists for this date")

        exception = ScheduleException(
            doctor_id=doctor.id,
            exception_date=data.date,
            exception_type=data.type,
            reason=data.reason,
            slots=[slot.model_dump() for slot in data.slots],
            created_by=created_by,
        )
        self.db.add(exception)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise DuplicateScheduleException("An exception already exists for this date")

        self.db.refresh(exception)
        logger.info(f"Added {data.type.value} exception for doctor {doctor.id} on {data.date}")
        return exception

    def list_exceptions(self, doctor_id: int, upcoming_only: bool = False) -> List[ScheduleException]:
        query = self.db.query(ScheduleException).filter(ScheduleException.doctor_id == doctor_id)
        if upcoming_only:
            today = clinic_today()
            query = query.filter(
                ScheduleException.exception_date >= today,
                ScheduleException.exception_date <= today + timedelta(days=90),
            )
        return query.order_by(ScheduleException.exception_date.asc()).all()

    def delete_exception(self, doctor: DoctorProfile, exception_id: int) -> None:
        exception = self.db.query(ScheduleException).filter(ScheduleException.id == exception_id).first()
        if not exception:
            raise NotFound("Exception not found")
        if exception.doctor_id != doctor.id:
            raise Forbidden("Not authorized to delete this exception")

        self.db.delete(exception)
        self.db.commit()
        logger.info(f"Deleted schedule exception {exception_id} for doctor {doctor.id}")

    def _availability_view(self, doctor: DoctorProfile) -> dict:
        return {
            "doctor_id": doctor.id,
            "weekly_availability": doctor.weekly_availability or {},
            "slot_duration": effective_slot_duration(doctor.slot_duration),
            "buffer_time": doctor.buffer_time or 0,
            "max_reschedules": (
                settings.MAX_RESCHEDULES if doctor.max_reschedules is None else doctor.max_reschedules
            ),
            "min_reschedule_hours": (
                settings.MIN_RESCHEDULE_HOURS if doctor.min_reschedule_hours is None else doctor.min_reschedule_hours
            ),
        }
