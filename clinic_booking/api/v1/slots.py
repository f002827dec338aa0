from datetime import date
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ...api.deps import get_current_doctor
from ...core.database import get_db
from ...core.exceptions import PastDateBooking
from ...models.doctor import DoctorProfile
from ...schemas.schedule_exception import ScheduleExceptionCreate, ScheduleExceptionResponse
from ...schemas.slots import (
    AvailabilityResponse,
    AvailabilitySummaryResponse,
    AvailabilityUpdate,
    DaySlotsResponse,
)
from ...services.availability_service import clinic_today
from ...services.booking_service import BookingService
from ...services.schedule_service import ScheduleService

router = APIRouter(prefix="/slots", tags=["Slots"])

# Static paths are registered before /{doctor_id}/{date} so they are not
# captured by it.

@router.get("/summary/{doctor_id}", response_model=AvailabilitySummaryResponse)
async def get_availability_summary(doctor_id: int, db: Session = Depends(get_db)):
    """Slot counts per day for the next two weeks."""
    summary = BookingService(db).availability_summary(doctor_id)
    return {"doctor_id": doctor_id, "summary": summary}

@router.get("/availability/{doctor_id}", response_model=AvailabilityResponse)
async def get_availability(doctor_id: int, db: Session = Depends(get_db)):
    return ScheduleService(db).get_availability(doctor_id)

@router.put("/availability", response_model=AvailabilityResponse)
async def update_availability(
    update: AvailabilityUpdate,
    doctor: DoctorProfile = Depends(get_current_doctor),
    db: Session = Depends(get_db)
):
    """Replace the calling doctor's weekly template."""
    return ScheduleService(db).update_availability(doctor, update)

@router.post(
    "/exceptions",
    response_model=ScheduleExceptionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_exception(
    data: ScheduleExceptionCreate,
    doctor: DoctorProfile = Depends(get_current_doctor),
    db: Session = Depends(get_db)
):
    """Add a holiday, leave or override for one date."""
    return ScheduleService(db).create_exception(doctor, data, created_by=doctor.user_id)

@router.get("/exceptions", response_model=List[ScheduleExceptionResponse])
async def list_my_exceptions(
    doctor: DoctorProfile = Depends(get_current_doctor),
    db: Session = Depends(get_db)
):
    return ScheduleService(db).list_exceptions(doctor.id)

@router.get("/exceptions/{doctor_id}", response_model=List[ScheduleExceptionResponse])
async def list_upcoming_exceptions(doctor_id: int, db: Session = Depends(get_db)):
    """Upcoming exceptions for a doctor (public)."""
    return ScheduleService(db).list_exceptions(doctor_id, upcoming_only=True)

@router.delete("/exceptions/{exception_id}")
async def delete_exception(
    exception_id: int,
    doctor: DoctorProfile = Depends(get_current_doctor),
    db: Session = Depends(get_db)
):
    ScheduleService(db).delete_exception(doctor, exception_id)
    return {"message": "Exception deleted successfully"}

@router.get("/{doctor_id}/{target_date}", response_model=DaySlotsResponse)
async def get_available_slots(
    doctor_id: int,
    target_date: date,
    db: Session = Depends(get_db)
):
    """All, available and booked slots of a doctor on one date."""
    if target_date < clinic_today():
        raise PastDateBooking("Cannot view slots for past dates")
    return BookingService(db).day_slots(doctor_id, target_date)
