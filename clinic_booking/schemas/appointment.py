from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator

from ..core.config import settings
from ..models.appointment import AppointmentStatus
from .patient import PatientSummary

def _clean_notes(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > settings.MAX_NOTES_LENGTH:
        raise ValueError(f"Notes must be {settings.MAX_NOTES_LENGTH} characters or fewer.")

    return normalized

class AppointmentBook(BaseModel):
    doctor_id: int
    start_time: datetime
    notes: Optional[str] = None

    @field_validator("notes")
    @classmethod
    def validate_notes(cls, value: Optional[str]) -> Optional[str]:
        return _clean_notes(value)

class AppointmentReschedule(BaseModel):
    start_time: datetime
    doctor_id: Optional[int] = None
    notes: Optional[str] = None

    @field_validator("notes")
    @classmethod
    def validate_notes(cls, value: Optional[str]) -> Optional[str]:
        return _clean_notes(value)

class AppointmentResponse(BaseModel):
    id: int
    doctor_id: int
    patient_id: int
    scheduled_start: datetime
    scheduled_end: datetime
    status: AppointmentStatus
    notes: Optional[str] = None
    cancelled_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class DoctorAppointmentResponse(AppointmentResponse):
    """Appointment as the doctor sees it, with the patient's contact details."""
    patient: PatientSummary
