from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import List

from ..core.database import get_db
from ..core.locks import ScheduleLocks, get_schedule_locks
from ..core.security import (
    security, authenticate, AuthorizationError, UserRole, Principal
)
from ..services.appointment_service import AppointmentService
from ..services.availability_service import AvailabilityCatalog
from ..services.directory_service import DoctorDirectory, PatientDirectory

async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> Principal:
    """Resolve the bearer token to the calling user and role."""
    return authenticate(credentials.credentials)

# Role-based access control dependencies
def require_role(allowed_roles: List[UserRole]):
    """Create a dependency that requires specific user roles."""
    async def role_checker(
        principal: Principal = Depends(get_current_principal)
    ) -> Principal:
        if principal.role not in allowed_roles:
            raise AuthorizationError(
                f"Access denied. Required roles: {[role.value for role in allowed_roles]}"
            )
        return principal

    return role_checker

# Specific role dependencies
async def get_admin_principal(
    principal: Principal = Depends(require_role([UserRole.ADMIN]))
) -> Principal:
    """Require admin role."""
    return principal

async def get_doctor_principal(
    principal: Principal = Depends(require_role([UserRole.DOCTOR]))
) -> Principal:
    """Require doctor role; doctors act on their own schedule only."""
    return principal

async def get_patient_principal(
    principal: Principal = Depends(require_role([UserRole.PATIENT]))
) -> Principal:
    """Require patient role."""
    return principal

# Service dependencies
def get_appointment_service(
    db: Session = Depends(get_db),
    locks: ScheduleLocks = Depends(get_schedule_locks)
) -> AppointmentService:
    return AppointmentService(db, locks=locks)

def get_availability_catalog(db: Session = Depends(get_db)) -> AvailabilityCatalog:
    return AvailabilityCatalog(db)

def get_doctor_directory(db: Session = Depends(get_db)) -> DoctorDirectory:
    return DoctorDirectory(db)

def get_patient_directory(db: Session = Depends(get_db)) -> PatientDirectory:
    return PatientDirectory(db)
