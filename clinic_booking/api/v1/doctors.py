from datetime import date
from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional

from ...api.deps import (
    get_admin_principal, get_appointment_service, get_availability_catalog,
    get_current_principal, get_doctor_directory, get_doctor_principal
)
from ...core.security import Principal
from ...schemas.appointment import DoctorAppointmentResponse
from ...schemas.doctor import (
    DoctorAvailabilityResponse, DoctorCreate, DoctorResponse,
    DoctorUpdate, SlotCreate, SlotResponse
)
from ...services.appointment_service import AppointmentService
from ...services.availability_service import AvailabilityCatalog
from ...services.directory_service import DoctorDirectory

router = APIRouter(prefix="/doctors", tags=["Doctors"])

@router.get("", response_model=List[DoctorResponse])
async def list_doctors(
    principal: Principal = Depends(get_current_principal),
    directory: DoctorDirectory = Depends(get_doctor_directory)
):
    return directory.list_doctors()

@router.get("/search", response_model=List[DoctorResponse])
async def search_doctors(
    time: Optional[str] = Query(None, description="Exact slot, e.g. 09:00-10:00"),
    name: Optional[str] = None,
    specialty: Optional[str] = None,
    principal: Principal = Depends(get_current_principal),
    catalog: AvailabilityCatalog = Depends(get_availability_catalog)
):
    """Search doctors by offered slot, name and specialty."""
    return catalog.filter_doctors_by_template(time=time, name=name, specialty=specialty)

# Endpoints for the calling doctor; declared before /{doctor_id} routes
@router.post("/me/slots", response_model=SlotResponse, status_code=status.HTTP_201_CREATED)
async def add_my_slot(
    slot: SlotCreate,
    principal: Principal = Depends(get_doctor_principal),
    catalog: AvailabilityCatalog = Depends(get_availability_catalog)
):
    return catalog.add_slot(principal.user_id, slot.time_slot)

@router.delete("/me/slots/{slot_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_my_slot(
    slot_id: int,
    principal: Principal = Depends(get_doctor_principal),
    catalog: AvailabilityCatalog = Depends(get_availability_catalog)
):
    catalog.remove_slot(slot_id, principal.user_id)

@router.get("/me/appointments", response_model=List[DoctorAppointmentResponse])
async def my_schedule(
    day: date,
    patient_name: Optional[str] = None,
    principal: Principal = Depends(get_doctor_principal),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Appointments of the calling doctor on one day, optionally by patient name."""
    return service.doctor_schedule(principal.user_id, day, patient_name)

@router.get("/me/appointments/upcoming", response_model=List[DoctorAppointmentResponse])
async def my_upcoming_appointments(
    patient_name: Optional[str] = None,
    principal: Principal = Depends(get_doctor_principal),
    service: AppointmentService = Depends(get_appointment_service)
):
    return service.upcoming_for_doctor(principal.user_id, patient_name)

@router.get("/{doctor_id}/slots", response_model=List[SlotResponse])
async def doctor_slots(
    doctor_id: int,
    principal: Principal = Depends(get_current_principal),
    catalog: AvailabilityCatalog = Depends(get_availability_catalog)
):
    return catalog.list_slots(doctor_id)

@router.get("/{doctor_id}/availability", response_model=DoctorAvailabilityResponse)
async def doctor_availability(
    doctor_id: int,
    day: date,
    principal: Principal = Depends(get_current_principal),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Slots of the doctor that are still free on ``day``."""
    return DoctorAvailabilityResponse(
        doctor_id=doctor_id,
        day=day.isoformat(),
        available_slots=service.resolver.bookable_slots_on(doctor_id, day)
    )

# Admin endpoints
@router.post("", response_model=DoctorResponse, status_code=status.HTTP_201_CREATED)
async def create_doctor(
    doctor: DoctorCreate,
    principal: Principal = Depends(get_admin_principal),
    directory: DoctorDirectory = Depends(get_doctor_directory)
):
    return directory.create_doctor(doctor)

@router.patch("/{doctor_id}", response_model=DoctorResponse)
async def update_doctor(
    doctor_id: int,
    doctor: DoctorUpdate,
    principal: Principal = Depends(get_admin_principal),
    directory: DoctorDirectory = Depends(get_doctor_directory)
):
    return directory.update_doctor(doctor_id, doctor)

@router.delete("/{doctor_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_doctor(
    doctor_id: int,
    principal: Principal = Depends(get_admin_principal),
    directory: DoctorDirectory = Depends(get_doctor_directory)
):
    directory.delete_doctor(doctor_id)
