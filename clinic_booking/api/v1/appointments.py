from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from ...api.deps import get_current_doctor, rate_limit_check, require_role
from ...core.database import get_db
from ...core.exceptions import Forbidden
from ...core.security import TokenPayload, UserRole
from ...models.appointment import Appointment, AppointmentStatus, AppointmentType
from ...models.doctor import DoctorProfile
from ...schemas.appointment import (
    AppointmentAuditResponse,
    AppointmentResponse,
    BookAppointmentRequest,
    CancelRequest,
    RescheduleRequest,
    StatusUpdateRequest,
)
from ...services.booking_service import BookingService

router = APIRouter(prefix="/appointments", tags=["Appointments"])

STAFF_ROLES = [UserRole.RECEPTIONIST, UserRole.CLINIC_ADMIN, UserRole.ADMIN]

def _ensure_can_access(appointment: Appointment, token: TokenPayload) -> None:
    """Patients see their own bookings, doctors their own calendar, staff their clinic."""
    if token.role == UserRole.ADMIN:
        return
    if token.role == UserRole.PATIENT:
        allowed = appointment.patient_id == token.sub
    elif token.role == UserRole.DOCTOR:
        allowed = appointment.doctor is not None and appointment.doctor.user_id == token.sub
    else:
        # Staff tokens must be scoped to a clinic
        allowed = token.clinic_id is not None and appointment.clinic_id == token.clinic_id
    if not allowed:
        raise Forbidden("Not authorized to access this appointment")

@router.post("/book", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
async def book_appointment(
    request: BookAppointmentRequest,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key", max_length=120),
    token: TokenPayload = Depends(require_role([UserRole.PATIENT, UserRole.RECEPTIONIST])),
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit_check)
):
    """
    Book one slot.

    Patients book online appointments for themselves; receptionists book
    walk-ins for the given ``patient_id``.
    """
    if token.role == UserRole.RECEPTIONIST:
        if request.patient_id is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="patient_id is required for walk-in bookings"
            )
        patient_id, appointment_type = request.patient_id, AppointmentType.WALK_IN
    else:
        patient_id, appointment_type = token.sub, AppointmentType.ONLINE

    return BookingService(db).book(
        doctor_id=request.doctor_id,
        patient_id=patient_id,
        target_date=request.date,
        start_time=request.start_time,
        appointment_type=appointment_type,
        notes=request.notes,
        booked_by=token.sub,
        idempotency_key=idempotency_key,
    )

@router.get("/my", response_model=List[AppointmentResponse])
async def my_appointments(
    appointment_status: Optional[AppointmentStatus] = None,
    token: TokenPayload = Depends(require_role([UserRole.PATIENT])),
    db: Session = Depends(get_db)
):
    return BookingService(db).list_for_patient(token.sub, status=appointment_status)

@router.get("/doctor", response_model=List[AppointmentResponse])
async def doctor_appointments(
    target_date: Optional[date] = None,
    appointment_status: Optional[AppointmentStatus] = None,
    doctor: DoctorProfile = Depends(get_current_doctor),
    db: Session = Depends(get_db)
):
    """The calling doctor's calendar, optionally for one date."""
    return BookingService(db).list_for_doctor(doctor.id, target_date=target_date, status=appointment_status)

@router.put("/{appointment_id}/reschedule", response_model=AppointmentResponse)
async def reschedule_appointment(
    appointment_id: int,
    request: RescheduleRequest,
    token: TokenPayload = Depends(require_role([UserRole.PATIENT] + STAFF_ROLES)),
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit_check)
):
    service = BookingService(db)
    _ensure_can_access(service.get_appointment(appointment_id), token)
    return service.reschedule(
        appointment_id,
        request.date,
        request.start_time,
        performed_by=token.sub,
        enforce_notice=token.role == UserRole.PATIENT,
    )

@router.put("/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: int,
    request: CancelRequest,
    token: TokenPayload = Depends(require_role([UserRole.PATIENT, UserRole.DOCTOR] + STAFF_ROLES)),
    db: Session = Depends(get_db)
):
    service = BookingService(db)
    _ensure_can_access(service.get_appointment(appointment_id), token)
    return service.cancel(appointment_id, reason=request.reason, performed_by=token.sub)

@router.put("/{appointment_id}/status", response_model=AppointmentResponse)
async def update_appointment_status(
    appointment_id: int,
    request: StatusUpdateRequest,
    token: TokenPayload = Depends(require_role([UserRole.DOCTOR] + STAFF_ROLES)),
    db: Session = Depends(get_db)
):
    """Move an appointment along the visit workflow."""
    service = BookingService(db)
    _ensure_can_access(service.get_appointment(appointment_id), token)
    return service.update_status(appointment_id, request.status, performed_by=token.sub)

@router.get("/{appointment_id}/audit", response_model=AppointmentAuditResponse)
async def appointment_audit(
    appointment_id: int,
    token: TokenPayload = Depends(require_role([UserRole.PATIENT, UserRole.DOCTOR] + STAFF_ROLES)),
    db: Session = Depends(get_db)
):
    appointment = BookingService(db).get_appointment(appointment_id)
    _ensure_can_access(appointment, token)
    return {"appointment": appointment, "audit_log": appointment.audit_entries}
