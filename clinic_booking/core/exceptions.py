"""
Scheduling error taxonomy.

Every error carries a stable machine-readable ``kind`` next to the human
message, and maps onto the HTTP status the API answers with.
"""
from typing import Optional
from fastapi import HTTPException, status


class SchedulingError(HTTPException):
    kind = "SchedulingError"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        super().__init__(
            status_code=status_code or self.http_status,
            detail={"kind": self.kind, "message": message},
        )

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


class InvalidScheduleData(SchedulingError):
    """Stored availability or exception data cannot be interpreted."""
    kind = "InvalidScheduleData"
    http_status = status.HTTP_422_UNPROCESSABLE_CONTENT


class SlotAlreadyBooked(SchedulingError):
    """The slot is held by a live appointment; re-query and pick another."""
    kind = "SlotAlreadyBooked"
    http_status = status.HTTP_409_CONFLICT


class SlotUnavailable(SchedulingError):
    """The start time is not one of the doctor's slots on that date."""
    kind = "SlotUnavailable"


class InvalidStatusTransition(SchedulingError):
    kind = "InvalidStatusTransition"


class RescheduleLimitExceeded(SchedulingError):
    kind = "RescheduleLimitExceeded"


class PastDateBooking(SchedulingError):
    kind = "PastDateBooking"


class ConcurrentModification(SchedulingError):
    kind = "ConcurrentModification"
    http_status = status.HTTP_409_CONFLICT


class DuplicateScheduleException(SchedulingError):
    kind = "DuplicateScheduleException"
    http_status = status.HTTP_409_CONFLICT


class NotFound(SchedulingError):
    kind = "NotFound"
    http_status = status.HTTP_404_NOT_FOUND


class Forbidden(SchedulingError):
    kind = "Forbidden"
    http_status = status.HTTP_403_FORBIDDEN


class IdempotencyKeyMismatch(SchedulingError):
    """An idempotency key was replayed with a different booking."""
    kind = "IdempotencyKeyMismatch"
    http_status = status.HTTP_422_UNPROCESSABLE_CONTENT


class RescheduleNoticeTooShort(SchedulingError):
    """The appointment starts too soon to be moved by the patient."""
    kind = "RescheduleNoticeTooShort"
