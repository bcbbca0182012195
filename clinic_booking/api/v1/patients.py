from fastapi import APIRouter, Depends, status

from ...api.deps import get_admin_principal, get_patient_directory
from ...core.security import Principal
from ...schemas.patient import PatientCreate, PatientSummary
from ...services.directory_service import PatientDirectory

router = APIRouter(prefix="/patients", tags=["Patients"])

@router.post("", response_model=PatientSummary, status_code=status.HTTP_201_CREATED)
async def create_patient(
    patient: PatientCreate,
    principal: Principal = Depends(get_admin_principal),
    directory: PatientDirectory = Depends(get_patient_directory)
):
    """Register a patient record (admin only)."""
    return directory.create_patient(patient)

@router.get("/{patient_id}", response_model=PatientSummary)
async def get_patient(
    patient_id: int,
    principal: Principal = Depends(get_admin_principal),
    directory: PatientDirectory = Depends(get_patient_directory)
):
    return directory.get_patient(patient_id)
