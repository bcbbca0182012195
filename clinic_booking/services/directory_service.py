import logging
from typing import List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.exceptions import (
    DoctorHasAppointments, DoctorNotFound, DuplicateDoctor,
    DuplicatePatient, PatientNotFound
)
from ..models.appointment import Appointment, AppointmentStatus
from ..models.doctor import Doctor
from ..models.patient import Patient
from ..schemas.doctor import DoctorCreate, DoctorUpdate
from ..schemas.patient import PatientCreate

logger = logging.getLogger(__name__)

class DoctorDirectory:
    """Doctor records, managed by admins."""

    def __init__(self, db: Session):
        self.db = db

    def get_doctor(self, doctor_id: int) -> Doctor:
        doctor = self.db.get(Doctor, doctor_id)
        if not doctor:
            raise DoctorNotFound(doctor_id=doctor_id)
        return doctor

    def list_doctors(self) -> List[Doctor]:
        return self.db.query(Doctor).order_by(Doctor.last_name.asc(), Doctor.id.asc()).all()

    def create_doctor(self, doctor_data: DoctorCreate) -> Doctor:
        existing_doctor = self.db.query(Doctor).filter(
            Doctor.email == doctor_data.email
        ).first()

        if existing_doctor:
            raise DuplicateDoctor(email=doctor_data.email)

        new_doctor = Doctor(**doctor_data.model_dump())

        self.db.add(new_doctor)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise DuplicateDoctor(email=doctor_data.email) from exc
        self.db.refresh(new_doctor)

        logger.info(f"Created doctor {new_doctor.id} ({new_doctor.specialization})")
        return new_doctor

    def update_doctor(self, doctor_id: int, doctor_data: DoctorUpdate) -> Doctor:
        """Apply the non-blank fields of ``doctor_data``."""
        doctor = self.get_doctor(doctor_id)

        for field, value in doctor_data.model_dump(exclude_unset=True).items():
            if value is None or (isinstance(value, str) and not value.strip()):
                continue
            if field == "email":
                value = value.strip().lower()
                clash = self.db.query(Doctor).filter(
                    Doctor.email == value,
                    Doctor.id != doctor_id
                ).first()
                if clash:
                    raise DuplicateDoctor(email=value)
            setattr(doctor, field, value)

        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise DuplicateDoctor(doctor_id=doctor_id) from exc
        self.db.refresh(doctor)

        logger.info(f"Updated doctor {doctor_id}")
        return doctor

    def delete_doctor(self, doctor_id: int) -> None:
        """Remove a doctor together with their time slots.

        Cancelled appointments go with the doctor. Scheduled and completed ones
        are kept as history, so a doctor that any of them refers to cannot be
        deleted.
        """
        doctor = self.get_doctor(doctor_id)

        kept = self.db.query(Appointment.id).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.status != AppointmentStatus.CANCELLED
        ).first()
        if kept:
            raise DoctorHasAppointments(doctor_id=doctor_id)

        # Only cancelled appointments are left at this point
        cancelled = len(doctor.appointments)
        for appointment in doctor.appointments:
            self.db.delete(appointment)
        self.db.delete(doctor)
        self.db.commit()
        logger.info(
            f"Deleted doctor {doctor_id}, their time slots and {cancelled} cancelled appointments"
        )

class PatientDirectory:
    def __init__(self, db: Session):
        self.db = db

    def get_patient(self, patient_id: int) -> Patient:
        patient = self.db.get(Patient, patient_id)
        if not patient:
            raise PatientNotFound(patient_id=patient_id)
        return patient

    def create_patient(self, patient_data: PatientCreate) -> Patient:
        existing_patient = self.db.query(Patient).filter(
            Patient.email == patient_data.email
        ).first()

        if existing_patient:
            raise DuplicatePatient(email=patient_data.email)

        new_patient = Patient(**patient_data.model_dump())

        self.db.add(new_patient)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise DuplicatePatient(email=patient_data.email) from exc
        self.db.refresh(new_patient)

        logger.info(f"Created patient {new_patient.id}")
        return new_patient
