from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

class DoctorCreate(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    specialization: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone_number: Optional[str] = Field(None, max_length=20)
    qualification: Optional[str] = Field(None, max_length=255)
    years_of_experience: Optional[int] = Field(None, ge=0)
    bio: Optional[str] = None
    office_address: Optional[str] = Field(None, max_length=255)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()

class DoctorUpdate(BaseModel):
    """Partial update; omitted or blank fields keep their current value."""
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    specialization: Optional[str] = Field(None, max_length=100)
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = Field(None, max_length=20)
    qualification: Optional[str] = Field(None, max_length=255)
    years_of_experience: Optional[int] = Field(None, ge=0)
    bio: Optional[str] = None
    office_address: Optional[str] = Field(None, max_length=255)

class DoctorResponse(BaseModel):
    id: int
    first_name: str
    last_name: str
    specialization: str
    email: str
    phone_number: Optional[str] = None
    qualification: Optional[str] = None
    years_of_experience: Optional[int] = None
    office_address: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class SlotCreate(BaseModel):
    # Format is checked by the availability catalog, not here
    time_slot: str = Field(..., examples=["09:00-10:00"])

class SlotResponse(BaseModel):
    id: int
    doctor_id: int
    time_slot: str

    class Config:
        from_attributes = True

class DoctorAvailabilityResponse(BaseModel):
    doctor_id: int
    day: str
    available_slots: List[str]
