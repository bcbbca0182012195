from datetime import date, datetime, time
from typing import List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from ..models.appointment import Appointment, AppointmentCondition, AppointmentStatus
from ..models.doctor import Doctor
from ..models.patient import Patient

class BookingLedger:
    """Storage for appointments. Queries only; booking rules live elsewhere."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, appointment_id: int) -> Optional[Appointment]:
        return self.db.query(Appointment).filter(
            Appointment.id == appointment_id
        ).first()

    def find_by_doctor_and_range(
        self,
        doctor_id: int,
        start: datetime,
        end: datetime,
        include_cancelled: bool = True
    ) -> List[Appointment]:
        """Appointments of a doctor starting within ``[start, end]`` (inclusive)."""
        query = self.db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.scheduled_start >= start,
            Appointment.scheduled_start <= end
        )
        if not include_cancelled:
            query = query.filter(Appointment.status != AppointmentStatus.CANCELLED)
        return query.order_by(Appointment.scheduled_start.asc()).all()

    def find_overlapping(
        self,
        doctor_id: int,
        start: datetime,
        end: datetime,
        exclude_id: Optional[int] = None
    ) -> List[Appointment]:
        """Live appointments of a doctor intersecting the half-open window ``[start, end)``."""
        query = self.db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.status != AppointmentStatus.CANCELLED,
            Appointment.scheduled_start < end,
            Appointment.scheduled_end > start
        )
        if exclude_id is not None:
            query = query.filter(Appointment.id != exclude_id)
        return query.order_by(Appointment.scheduled_start.asc()).all()

    def find_by_patient(self, patient_id: int) -> List[Appointment]:
        return self.db.query(Appointment).filter(
            Appointment.patient_id == patient_id
        ).order_by(Appointment.scheduled_start.asc()).all()

    def find_by_patient_and_status(
        self,
        patient_id: int,
        status: AppointmentStatus
    ) -> List[Appointment]:
        return self.db.query(Appointment).filter(
            Appointment.patient_id == patient_id,
            Appointment.status == status
        ).order_by(Appointment.scheduled_start.asc()).all()

    def filter_for_patient(
        self,
        patient_id: int,
        now: datetime,
        status: Optional[AppointmentStatus] = None,
        condition: Optional[AppointmentCondition] = None,
        doctor_name: Optional[str] = None
    ) -> List[Appointment]:
        """A patient's appointments narrowed by status, time condition and doctor name.

        ``past`` is every completed appointment plus scheduled ones that have
        already started; ``future`` is scheduled appointments after ``now``.
        Cancelled appointments are neither.
        """
        query = self.db.query(Appointment).filter(Appointment.patient_id == patient_id)
        if status is not None:
            query = query.filter(Appointment.status == status)
        if condition is AppointmentCondition.PAST:
            query = query.filter(or_(
                Appointment.status == AppointmentStatus.COMPLETED,
                and_(
                    Appointment.status == AppointmentStatus.SCHEDULED,
                    Appointment.scheduled_start < now
                )
            ))
        elif condition is AppointmentCondition.FUTURE:
            query = query.filter(
                Appointment.status == AppointmentStatus.SCHEDULED,
                Appointment.scheduled_start > now
            )

        name = doctor_name.strip() if doctor_name else ""
        if name:
            full_name = Doctor.first_name + " " + Doctor.last_name
            query = query.join(Doctor, Appointment.doctor_id == Doctor.id).filter(
                full_name.ilike(f"%{name}%")
            )
        return query.order_by(Appointment.scheduled_start.asc()).all()

    def find_for_doctor_on_date(
        self,
        doctor_id: int,
        day: date,
        patient_name: Optional[str] = None
    ) -> List[Appointment]:
        """A doctor's appointments on one calendar day, optionally by patient name."""
        start_of_day = datetime.combine(day, time.min)
        end_of_day = datetime.combine(day, time.max)
        query = self.db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.scheduled_start >= start_of_day,
            Appointment.scheduled_start <= end_of_day
        )
        query = self._filter_patient_name(query, patient_name)
        return query.order_by(Appointment.scheduled_start.asc()).all()

    def find_upcoming_for_doctor(
        self,
        doctor_id: int,
        now: datetime,
        patient_name: Optional[str] = None
    ) -> List[Appointment]:
        query = self.db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.status == AppointmentStatus.SCHEDULED,
            Appointment.scheduled_start >= now
        )
        query = self._filter_patient_name(query, patient_name)
        return query.order_by(Appointment.scheduled_start.asc()).all()

    def save(self, appointment: Appointment) -> Appointment:
        """Stage an appointment; the caller owns the transaction."""
        self.db.add(appointment)
        self.db.flush()
        return appointment

    def delete(self, appointment: Appointment) -> None:
        self.db.delete(appointment)
        self.db.flush()

    def _filter_patient_name(self, query, patient_name: Optional[str]):
        name = patient_name.strip() if patient_name else ""
        if not name:
            return query
        full_name = Patient.first_name + " " + Patient.last_name
        return query.join(Patient, Appointment.patient_id == Patient.id).filter(
            full_name.ilike(f"%{name}%")
        )
