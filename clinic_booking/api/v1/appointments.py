from fastapi import APIRouter, Depends, status
from typing import List, Optional

from ...api.deps import (
    get_appointment_service, get_doctor_principal, get_patient_principal
)
from ...core.security import Principal
from ...models.appointment import AppointmentCondition, AppointmentStatus
from ...schemas.appointment import (
    AppointmentBook, AppointmentReschedule, AppointmentResponse
)
from ...services.appointment_service import AppointmentService

router = APIRouter(prefix="/appointments", tags=["Appointments"])

# Writes wait on the doctor's schedule lock, so they are plain functions and
# run in the threadpool instead of on the event loop

@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def book_appointment(
    booking: AppointmentBook,
    principal: Principal = Depends(get_patient_principal),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Book a one-hour appointment for the calling patient."""
    return service.book(
        doctor_id=booking.doctor_id,
        patient_id=principal.user_id,
        requested_start=booking.start_time,
        notes=booking.notes
    )

@router.get("/me", response_model=List[AppointmentResponse])
async def my_appointments(
    status: Optional[AppointmentStatus] = None,
    condition: Optional[AppointmentCondition] = None,
    doctor_name: Optional[str] = None,
    principal: Principal = Depends(get_patient_principal),
    service: AppointmentService = Depends(get_appointment_service)
):
    """List the calling patient's appointments, oldest first.

    Filter by ``status``, by ``condition`` (past or future) and by part of the
    doctor's name.
    """
    return service.appointments_for_patient(
        principal.user_id,
        status=status,
        condition=condition,
        doctor_name=doctor_name
    )

@router.patch("/{appointment_id}", response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    change: AppointmentReschedule,
    principal: Principal = Depends(get_patient_principal),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Move one of the caller's appointments to a new time and/or doctor."""
    return service.reschedule(
        appointment_id,
        new_start=change.start_time,
        new_doctor_id=change.doctor_id,
        new_notes=change.notes,
        requesting_patient_id=principal.user_id
    )

@router.delete("/{appointment_id}", response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    principal: Principal = Depends(get_patient_principal),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Cancel one of the caller's appointments."""
    return service.cancel(appointment_id, requesting_patient_id=principal.user_id)

@router.post("/{appointment_id}/complete", response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    principal: Principal = Depends(get_doctor_principal),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Mark one of the calling doctor's appointments as completed."""
    return service.complete(appointment_id, requesting_doctor_id=principal.user_id)
