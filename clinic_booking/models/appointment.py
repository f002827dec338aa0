from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Date, Text, Index, text, Enum as SQLEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base

class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    BOOKED = "booked"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    IN_CONSULTATION = "in_consultation"
    PRESCRIPTION_CREATED = "prescription_created"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

class AppointmentType(str, enum.Enum):
    ONLINE = "online"
    WALK_IN = "walk-in"

# Statuses that no longer hold their slot
RELEASED_STATUSES = (AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW)

RESCHEDULABLE_STATUSES = (
    AppointmentStatus.PENDING,
    AppointmentStatus.BOOKED,
    AppointmentStatus.CONFIRMED,
)

ALLOWED_TRANSITIONS = {
    AppointmentStatus.PENDING: {
        AppointmentStatus.BOOKED,
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.BOOKED: {
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CHECKED_IN,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.CONFIRMED: {
        AppointmentStatus.CHECKED_IN,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.CHECKED_IN: {
        AppointmentStatus.IN_CONSULTATION,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.IN_CONSULTATION: {
        AppointmentStatus.PRESCRIPTION_CREATED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.PRESCRIPTION_CREATED: {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.CANCELLED: set(),
    AppointmentStatus.NO_SHOW: set(),
}

def _enum_values(members):
    return [member.value for member in members]

class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # At most one live appointment per doctor, date and start time
        Index(
            "uq_appointments_live_slot",
            "doctor_id",
            "appointment_date",
            "start_time",
            unique=True,
            sqlite_where=text("status NOT IN ('cancelled', 'no_show')"),
            postgresql_where=text("status NOT IN ('cancelled', 'no_show')"),
        ),
        Index("idx_appointments_doctor_date", "doctor_id", "appointment_date"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Relationships
    patient_id = Column(Integer, nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    clinic_id = Column(Integer, nullable=True, index=True)

    # Appointment details
    appointment_date = Column(Date, nullable=False, index=True)
    start_time = Column(String(5), nullable=False)  # "HH:MM"
    end_time = Column(String(5), nullable=False)  # fixed at booking time
    status = Column(
        SQLEnum(AppointmentStatus, values_callable=_enum_values, native_enum=False, length=32),
        nullable=False,
        default=AppointmentStatus.BOOKED,
    )
    appointment_type = Column(
        SQLEnum(AppointmentType, values_callable=_enum_values, native_enum=False, length=16),
        nullable=False,
        default=AppointmentType.ONLINE,
    )
    notes = Column(Text, nullable=True)

    # Tracking
    booked_by = Column(Integer, nullable=True)
    idempotency_key = Column(String(120), nullable=True, unique=True)
    reschedule_count = Column(Integer, nullable=False, default=0)
    cancel_reason = Column(String(255), nullable=True)
    cancelled_by = Column(Integer, nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    doctor = relationship("DoctorProfile", back_populates="appointments")
    audit_entries = relationship(
        "AppointmentAuditEntry",
        back_populates="appointment",
        order_by="AppointmentAuditEntry.id",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<Appointment(id={self.id}, patient_id={self.patient_id}, doctor_id={self.doctor_id}, date='{self.appointment_date}', start='{self.start_time}')>"

class AppointmentAuditEntry(Base):
    __tablename__ = "appointment_audit_entries"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    action = Column(String(32), nullable=False)
    performed_by = Column(Integer, nullable=True)
    details = Column(String(255), nullable=True)
    old_value = Column(String(64), nullable=True)
    new_value = Column(String(64), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    appointment = relationship("Appointment", back_populates="audit_entries")

    def __repr__(self):
        return f"<AppointmentAuditEntry(appointment_id={self.appointment_id}, action='{self.action}')>"
