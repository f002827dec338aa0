from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models.appointment import AppointmentStatus, AppointmentType
from .slots import CLOCK_TIME_PATTERN

MAX_APPOINTMENT_NOTES_LENGTH = 500


def _validate_clock_time(value: str) -> str:
    normalized = value.strip()
    if not CLOCK_TIME_PATTERN.match(normalized):
        raise ValueError("Invalid start time. Use HH:MM (24-hour format).")
    return normalized


class BookAppointmentRequest(BaseModel):
    doctor_id: int
    date: date
    start_time: str
    notes: Optional[str] = None
    # Required when a receptionist books a walk-in
    patient_id: Optional[int] = None

    @field_validator("start_time")
    @classmethod
    def validate_start_time(cls, value: str) -> str:
        return _validate_clock_time(value)

    @field_validator("notes")
    @classmethod
    def validate_notes(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
            raise ValueError(f"Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.")

        return normalized


class RescheduleRequest(BaseModel):
    date: date
    start_time: str

    @field_validator("start_time")
    @classmethod
    def validate_start_time(cls, value: str) -> str:
        return _validate_clock_time(value)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=255)


class StatusUpdateRequest(BaseModel):
    status: AppointmentStatus


class AppointmentResponse(BaseModel):
    id: int
    doctor_id: int
    patient_id: int
    appointment_date: date = Field(serialization_alias="date")
    start_time: str
    end_time: str
    status: AppointmentStatus
    appointment_type: AppointmentType = Field(serialization_alias="type")
    reschedule_count: int
    notes: Optional[str] = None
    cancel_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class AuditEntryResponse(BaseModel):
    action: str
    performed_by: Optional[int] = None
    details: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class AppointmentAuditResponse(BaseModel):
    appointment: AppointmentResponse
    audit_log: List[AuditEntryResponse]
