from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..models.schedule_exception import ExceptionType
from .slots import TimeRange


class ScheduleExceptionCreate(BaseModel):
    date: date
    type: ExceptionType
    reason: Optional[str] = Field(default=None, max_length=500)
    slots: List[TimeRange] = Field(default_factory=list)

    @field_validator("reason")
    @classmethod
    def normalize_reason(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None

    @model_validator(mode="after")
    def drop_slots_for_day_off(self) -> "ScheduleExceptionCreate":
        # holiday/leave = no slots
        if self.type != ExceptionType.OVERRIDE:
            self.slots = []
        return self


class ScheduleExceptionResponse(BaseModel):
    id: int
    doctor_id: int
    exception_date: date = Field(serialization_alias="date")
    exception_type: ExceptionType = Field(serialization_alias="type")
    reason: Optional[str] = None
    slots: List[TimeRange] = Field(default_factory=list)
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
