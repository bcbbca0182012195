"""Appointment lifecycle: booking, rescheduling, cancelling and completing.

Every write that can create a conflict runs inside ``_doctor_schedule``: the
doctor's schedule lock is held, the doctor row is locked ``FOR UPDATE`` and the
conflict check, the write and the commit happen before either is released.
A unique index on live ``(doctor_id, scheduled_start)`` pairs backs this up at
the storage level; if it fires, the caller gets ``SlotAlreadyBooked``.
"""
import logging
from contextlib import contextmanager
from datetime import date, datetime
from typing import Callable, Iterator, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.exceptions import (
    AppointmentNotFound, DoctorNotFound,
    InvalidAppointmentState, NotOwner, SlotAlreadyBooked
)
from ..core.locks import ScheduleLocks, get_schedule_locks
from ..core.slots import APPOINTMENT_DURATION, normalize_start
from ..models.appointment import Appointment, AppointmentCondition, AppointmentStatus
from ..models.doctor import Doctor
from .availability_service import AvailabilityCatalog
from .booking_ledger import BookingLedger
from .conflict_resolver import ConflictResolver
from .directory_service import PatientDirectory

class AppointmentService:
    def __init__(
        self,
        db: Session,
        locks: Optional[ScheduleLocks] = None,
        clock: Callable[[], datetime] = datetime.now,
        logger: Optional[logging.Logger] = None
    ):
        self.db = db
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self.locks = locks or get_schedule_locks()
        self.ledger = BookingLedger(db)
        self.patients = PatientDirectory(db)
        self.resolver = ConflictResolver(
            AvailabilityCatalog(db, logger=self.logger),
            self.ledger,
            clock=clock,
            logger=self.logger
        )

    def book(
        self,
        doctor_id: int,
        patient_id: int,
        requested_start: datetime,
        notes: Optional[str] = None
    ) -> Appointment:
        """Book ``[requested_start, requested_start + 1h)`` with a doctor."""
        start = normalize_start(requested_start)

        with self._doctor_schedule(doctor_id):
            self.patients.get_patient(patient_id)
            self.resolver.ensure_bookable(doctor_id, start)

            appointment = Appointment(
                doctor_id=doctor_id,
                patient_id=patient_id,
                scheduled_start=start,
                scheduled_end=start + APPOINTMENT_DURATION,
                status=AppointmentStatus.SCHEDULED,
                notes=notes
            )
            self.ledger.save(appointment)

        self.db.refresh(appointment)
        self.logger.info(
            f"Booked appointment {appointment.id}: doctor {doctor_id}, "
            f"patient {patient_id}, {start.isoformat()}"
        )
        return appointment

    def reschedule(
        self,
        appointment_id: int,
        new_start: datetime,
        new_doctor_id: Optional[int] = None,
        new_notes: Optional[str] = None,
        requesting_patient_id: Optional[int] = None
    ) -> Appointment:
        """Move an appointment, optionally to another doctor.

        The appointment keeps its identity. It is left out of its own conflict
        check, so "moving" it onto the slot it already holds succeeds.
        """
        appointment = self._get_owned(appointment_id, requesting_patient_id)
        self._require_scheduled(appointment)

        doctor_id = new_doctor_id if new_doctor_id is not None else appointment.doctor_id
        start = normalize_start(new_start)

        with self._doctor_schedule(doctor_id):
            # Another request may have changed it while we waited for the lock
            self.db.refresh(appointment)
            self._require_scheduled(appointment)

            self.resolver.ensure_bookable(doctor_id, start, exclude_appointment_id=appointment.id)

            previous = (appointment.doctor_id, appointment.scheduled_start)
            appointment.doctor_id = doctor_id
            appointment.scheduled_start = start
            appointment.scheduled_end = start + APPOINTMENT_DURATION
            if new_notes is not None:
                appointment.notes = new_notes
            self.ledger.save(appointment)

        self.db.refresh(appointment)
        self.logger.info(
            f"Rescheduled appointment {appointment.id} from doctor {previous[0]} at "
            f"{previous[1].isoformat()} to doctor {doctor_id} at {start.isoformat()}"
        )
        return appointment

    def cancel(self, appointment_id: int, requesting_patient_id: int) -> Appointment:
        """Cancel on behalf of the patient who booked it.

        The row is kept with status ``cancelled`` and stops blocking the slot.
        """
        appointment = self._require_appointment(appointment_id)
        if appointment.patient_id != requesting_patient_id:
            self.logger.warning(
                f"Patient {requesting_patient_id} tried to cancel appointment {appointment_id} "
                f"owned by patient {appointment.patient_id}"
            )
            raise NotOwner(appointment_id=appointment_id)
        return self._transition(appointment, AppointmentStatus.CANCELLED)

    def complete(self, appointment_id: int, requesting_doctor_id: int) -> Appointment:
        appointment = self._require_appointment(appointment_id)
        if appointment.doctor_id != requesting_doctor_id:
            self.logger.warning(
                f"Doctor {requesting_doctor_id} tried to complete appointment {appointment_id} "
                f"of doctor {appointment.doctor_id}"
            )
            raise NotOwner(appointment_id=appointment_id)
        return self._transition(appointment, AppointmentStatus.COMPLETED)

    def appointments_for_patient(
        self,
        patient_id: int,
        status: Optional[AppointmentStatus] = None,
        condition: Optional[AppointmentCondition] = None,
        doctor_name: Optional[str] = None
    ) -> List[Appointment]:
        """The patient's appointments, oldest first, optionally filtered.

        ``condition`` splits them into past and future relative to the clock;
        ``doctor_name`` is a case-insensitive match on the doctor's full name.
        """
        self.patients.get_patient(patient_id)
        if condition is None and not (doctor_name and doctor_name.strip()):
            if status is None:
                return self.ledger.find_by_patient(patient_id)
            return self.ledger.find_by_patient_and_status(patient_id, status)
        return self.ledger.filter_for_patient(
            patient_id,
            self.clock(),
            status=status,
            condition=condition,
            doctor_name=doctor_name
        )

    def doctor_schedule(
        self,
        doctor_id: int,
        day: date,
        patient_name: Optional[str] = None
    ) -> List[Appointment]:
        self._require_doctor(doctor_id)
        return self.ledger.find_for_doctor_on_date(doctor_id, day, patient_name)

    def upcoming_for_doctor(
        self,
        doctor_id: int,
        patient_name: Optional[str] = None
    ) -> List[Appointment]:
        self._require_doctor(doctor_id)
        return self.ledger.find_upcoming_for_doctor(doctor_id, self.clock(), patient_name)

    def _transition(self, appointment: Appointment, status: AppointmentStatus) -> Appointment:
        with self._doctor_schedule(appointment.doctor_id):
            self.db.refresh(appointment)
            self._require_scheduled(appointment)
            appointment.status = status
            if status is AppointmentStatus.CANCELLED:
                appointment.cancelled_at = self.clock()
            self.ledger.save(appointment)

        self.db.refresh(appointment)
        self.logger.info(f"Appointment {appointment.id} is now {status.value}")
        return appointment

    @contextmanager
    def _doctor_schedule(self, doctor_id: int) -> Iterator[Doctor]:
        """Serialize schedule changes for one doctor and commit them atomically."""
        with self.locks.hold(doctor_id):
            try:
                doctor = self.db.query(Doctor).filter(
                    Doctor.id == doctor_id
                ).with_for_update().first()
                if not doctor:
                    raise DoctorNotFound(doctor_id=doctor_id)
                yield doctor
                self.db.commit()
            except IntegrityError as exc:
                self.db.rollback()
                self.logger.warning(f"Double booking for doctor {doctor_id} stopped by the database")
                raise SlotAlreadyBooked(doctor_id=doctor_id) from exc
            except Exception:
                self.db.rollback()
                raise

    def _require_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.ledger.get(appointment_id)
        if not appointment:
            raise AppointmentNotFound(appointment_id=appointment_id)
        return appointment

    def _get_owned(self, appointment_id: int, requesting_patient_id: Optional[int]) -> Appointment:
        appointment = self._require_appointment(appointment_id)
        if requesting_patient_id is not None and appointment.patient_id != requesting_patient_id:
            self.logger.warning(
                f"Patient {requesting_patient_id} tried to change appointment {appointment_id} "
                f"owned by patient {appointment.patient_id}"
            )
            raise NotOwner(appointment_id=appointment_id)
        return appointment

    def _require_scheduled(self, appointment: Appointment) -> None:
        if appointment.status != AppointmentStatus.SCHEDULED:
            raise InvalidAppointmentState(
                appointment_id=appointment.id,
                status=appointment.status.value
            )

    def _require_doctor(self, doctor_id: int) -> Doctor:
        doctor = self.db.get(Doctor, doctor_id)
        if not doctor:
            raise DoctorNotFound(doctor_id=doctor_id)
        return doctor
