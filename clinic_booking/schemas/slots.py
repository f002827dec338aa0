from datetime import date
from typing import Dict, List, Optional
import re

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
VALID_SLOT_DURATIONS = (10, 15, 20, 30, 45, 60)
VALID_BUFFER_TIMES = (0, 5, 10, 15)

CLOCK_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class SlotWindow(BaseModel):
    start_time: str
    end_time: str

    model_config = ConfigDict(frozen=True)


class TimeRange(BaseModel):
    start_time: str
    end_time: str

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_clock_time(cls, value: str) -> str:
        normalized = value.strip()
        if not CLOCK_TIME_PATTERN.match(normalized):
            raise ValueError(f"Invalid time format. Use HH:MM (24-hour format). Got: {value}")
        return normalized

    @model_validator(mode="after")
    def validate_order(self) -> "TimeRange":
        if self.start_time >= self.end_time:
            raise ValueError(f"Start time ({self.start_time}) must be before end time ({self.end_time})")
        return self


class DayAvailability(BaseModel):
    is_available: bool = True
    slots: List[TimeRange] = Field(default_factory=list)


class AvailabilityUpdate(BaseModel):
    weekly_availability: Dict[str, DayAvailability]
    slot_duration: Optional[int] = None
    buffer_time: Optional[int] = None
    max_reschedules: Optional[int] = Field(default=None, ge=0)
    min_reschedule_hours: Optional[int] = Field(default=None, ge=0, le=72)

    @field_validator("weekly_availability")
    @classmethod
    def validate_weekdays(cls, value: Dict[str, DayAvailability]) -> Dict[str, DayAvailability]:
        normalized = {}
        for day, availability in value.items():
            day_name = day.strip().lower()
            if day_name not in WEEKDAYS:
                raise ValueError(f"Invalid day: {day}. Must be one of: {', '.join(WEEKDAYS)}")
            normalized[day_name] = availability
        return normalized

    @field_validator("slot_duration")
    @classmethod
    def validate_slot_duration(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value not in VALID_SLOT_DURATIONS:
            raise ValueError(
                f"Invalid slot duration. Must be one of: {', '.join(map(str, VALID_SLOT_DURATIONS))} minutes"
            )
        return value

    @field_validator("buffer_time")
    @classmethod
    def validate_buffer_time(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value not in VALID_BUFFER_TIMES:
            raise ValueError(
                f"Invalid buffer time. Must be one of: {', '.join(map(str, VALID_BUFFER_TIMES))} minutes"
            )
        return value


class AvailabilityResponse(BaseModel):
    doctor_id: int
    weekly_availability: Dict[str, DayAvailability]
    slot_duration: int
    buffer_time: int
    max_reschedules: int
    min_reschedule_hours: int


class DaySlotsResponse(BaseModel):
    doctor_id: int
    doctor_name: str
    date: date
    day_name: str
    is_available: bool
    slot_duration: int
    reason: Optional[str] = None
    all_slots: List[SlotWindow]
    available_slots: List[SlotWindow]
    booked_slots: List[SlotWindow]
    past_slots: List[SlotWindow] = Field(default_factory=list)


class DaySummary(BaseModel):
    date: date
    day_name: str
    is_available: bool
    total_slots: int
    available_slots: int
    exception: Optional[str] = None
    reason: Optional[str] = None


class AvailabilitySummaryResponse(BaseModel):
    doctor_id: int
    summary: List[DaySummary]
