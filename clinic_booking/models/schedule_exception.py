from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Date, JSON, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base

class ExceptionType(str, enum.Enum):
    HOLIDAY = "holiday"
    LEAVE = "leave"
    OVERRIDE = "override"

class ScheduleException(Base):
    __tablename__ = "schedule_exceptions"
    __table_args__ = (
        UniqueConstraint("doctor_id", "exception_date", name="uq_schedule_exception_doctor_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)

    exception_date = Column(Date, nullable=False, index=True)
    exception_type = Column(
        SQLEnum(
            ExceptionType,
            values_callable=lambda members: [member.value for member in members],
            native_enum=False,
            length=20,
        ),
        nullable=False,
    )
    reason = Column(String(500), nullable=True)
    # Replacement windows, only meaningful for overrides
    slots = Column(JSON, nullable=False, default=list)

    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    doctor = relationship("DoctorProfile", back_populates="schedule_exceptions")

    def __repr__(self):
        return f"<ScheduleException(id={self.id}, doctor_id={self.doctor_id}, date='{self.exception_date}', type='{self.exception_type}')>"
