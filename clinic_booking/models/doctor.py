from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from ..core.database import Base

class DoctorProfile(Base):
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    # Identity lives in the auth service; this is the token subject
    user_id = Column(Integer, unique=True, nullable=False, index=True)
    clinic_id = Column(Integer, nullable=True, index=True)

    full_name = Column(String(200), nullable=False)
    specialization = Column(String(100), nullable=True)

    # Scheduling
    slot_duration = Column(Integer, nullable=True, default=15)
    buffer_time = Column(Integer, nullable=False, default=0)
    max_reschedules = Column(Integer, nullable=True)
    min_reschedule_hours = Column(Integer, nullable=True)
    # {"monday": {"is_available": true, "slots": [{"start_time": "09:00", "end_time": "13:00"}]}, ...}
    weekly_availability = Column(JSON, nullable=False, default=dict)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    appointments = relationship("Appointment", back_populates="doctor")
    schedule_exceptions = relationship(
        "ScheduleException",
        back_populates="doctor",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<DoctorProfile(id={self.id}, name='{self.full_name}', slot_duration={self.slot_duration})>"
