"""Booking error taxonomy.

Every failure the booking core can report is a ``BookingError`` subclass.
Each carries an ``ErrorKind`` so callers can map whole families of errors
(for example to HTTP status codes) without knowing every concrete class,
and a stable ``code`` string for clients that need to branch on the reason.
"""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INVALID_STATE = "invalid_state"
    FORBIDDEN = "forbidden"


class BookingError(Exception):
    kind: ErrorKind = ErrorKind.INVALID_STATE
    code: str = "booking_error"
    default_message: str = "Booking operation failed"

    def __init__(self, message: Optional[str] = None, **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def __repr__(self):
        return f"<{type(self).__name__}(code='{self.code}', context={self.context})>"


# NotFound
class DoctorNotFound(BookingError):
    kind = ErrorKind.NOT_FOUND
    code = "doctor_not_found"
    default_message = "Doctor not found"


class PatientNotFound(BookingError):
    kind = ErrorKind.NOT_FOUND
    code = "patient_not_found"
    default_message = "Patient not found"


class AppointmentNotFound(BookingError):
    kind = ErrorKind.NOT_FOUND
    code = "appointment_not_found"
    default_message = "Appointment not found"


class SlotNotFoundOrNotOwned(BookingError):
    kind = ErrorKind.NOT_FOUND
    code = "slot_not_found"
    default_message = "Time slot not found for this doctor"


# Conflict
class SlotAlreadyBooked(BookingError):
    kind = ErrorKind.CONFLICT
    code = "slot_already_booked"
    default_message = "The doctor is already booked at this time"


class DuplicateSlot(BookingError):
    kind = ErrorKind.CONFLICT
    code = "duplicate_slot"
    default_message = "This time slot already exists for the doctor"


class DuplicateDoctor(BookingError):
    kind = ErrorKind.CONFLICT
    code = "duplicate_doctor"
    default_message = "A doctor with this email already exists"


class DuplicatePatient(BookingError):
    kind = ErrorKind.CONFLICT
    code = "duplicate_patient"
    default_message = "A patient with this email already exists"


class DoctorHasAppointments(BookingError):
    kind = ErrorKind.CONFLICT
    code = "doctor_has_appointments"
    default_message = "Doctor still has scheduled or completed appointments on record"


class ScheduleBusy(BookingError):
    kind = ErrorKind.CONFLICT
    code = "schedule_busy"
    default_message = "The doctor's schedule is being updated, try again"


# InvalidState
class SlotNotOffered(BookingError):
    kind = ErrorKind.INVALID_STATE
    code = "slot_not_offered"
    default_message = "The doctor does not offer this time slot"


class SlotInPast(BookingError):
    kind = ErrorKind.INVALID_STATE
    code = "slot_in_past"
    default_message = "Appointments must be scheduled in the future"


class InvalidSlotFormat(BookingError):
    kind = ErrorKind.INVALID_STATE
    code = "invalid_slot_format"
    default_message = "Time slots must look like HH:MM-HH:MM with the start before the end"


class InvalidAppointmentState(BookingError):
    kind = ErrorKind.INVALID_STATE
    code = "invalid_appointment_state"
    default_message = "The appointment can no longer be changed"


# Forbidden
class NotOwner(BookingError):
    kind = ErrorKind.FORBIDDEN
    code = "not_owner"
    default_message = "Only the owner of this appointment can change it"
