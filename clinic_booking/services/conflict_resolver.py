"""Decides whether a doctor can be booked at a given time.

A request for ``T`` asks for the one-hour interval ``[T, T + 1h)``. It is
bookable when all of these hold, checked in this order so the first failing
reason is the one reported:

1. the interval, written as ``HH:MM-HH:MM``, is one of the doctor's templates;
2. ``T`` is strictly after the current time;
3. no live (non-cancelled) appointment of the doctor overlaps the interval.

Intervals are half-open, so an appointment ending at 11:00 leaves 11:00 free.
"""
import enum
import logging
from datetime import date, datetime, time
from typing import Callable, List, Optional

from ..core.exceptions import SlotAlreadyBooked, SlotInPast, SlotNotOffered
from ..core.slots import (
    APPOINTMENT_DURATION,
    format_slot,
    intervals_overlap,
    normalize_start,
    slot_start_on,
)
from .availability_service import AvailabilityCatalog
from .booking_ledger import BookingLedger

class SlotDecision(str, enum.Enum):
    BOOKABLE = "bookable"
    SLOT_NOT_OFFERED = "slot_not_offered"
    SLOT_IN_PAST = "slot_in_past"
    SLOT_ALREADY_BOOKED = "slot_already_booked"

_DECISION_ERRORS = {
    SlotDecision.SLOT_NOT_OFFERED: SlotNotOffered,
    SlotDecision.SLOT_IN_PAST: SlotInPast,
    SlotDecision.SLOT_ALREADY_BOOKED: SlotAlreadyBooked,
}

class ConflictResolver:
    def __init__(
        self,
        catalog: AvailabilityCatalog,
        ledger: BookingLedger,
        clock: Callable[[], datetime] = datetime.now,
        logger: Optional[logging.Logger] = None
    ):
        self.catalog = catalog
        self.ledger = ledger
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)

    def evaluate(
        self,
        doctor_id: int,
        start: datetime,
        exclude_appointment_id: Optional[int] = None
    ) -> SlotDecision:
        """Raises ``DoctorNotFound`` for an unknown doctor."""
        templates = self.catalog.slot_strings(doctor_id)
        start = normalize_start(start)

        if format_slot(start, APPOINTMENT_DURATION) not in templates:
            return SlotDecision.SLOT_NOT_OFFERED

        if start <= self.clock():
            return SlotDecision.SLOT_IN_PAST

        overlapping = self.ledger.find_overlapping(
            doctor_id,
            start,
            start + APPOINTMENT_DURATION,
            exclude_id=exclude_appointment_id
        )
        if overlapping:
            return SlotDecision.SLOT_ALREADY_BOOKED

        return SlotDecision.BOOKABLE

    def ensure_bookable(
        self,
        doctor_id: int,
        start: datetime,
        exclude_appointment_id: Optional[int] = None
    ) -> None:
        decision = self.evaluate(doctor_id, start, exclude_appointment_id)
        if decision is not SlotDecision.BOOKABLE:
            self.logger.info(f"Doctor {doctor_id} not bookable at {start}: {decision.value}")
            raise _DECISION_ERRORS[decision](doctor_id=doctor_id, start=start.isoformat())

    def bookable_slots_on(self, doctor_id: int, day: date) -> List[str]:
        """The doctor's templates that can still be booked on ``day``."""
        templates = self.catalog.slot_strings(doctor_id)
        day_start = datetime.combine(day, time.min)
        # Appointments starting late the previous evening can spill into this day
        booked = self.ledger.find_by_doctor_and_range(
            doctor_id,
            day_start - APPOINTMENT_DURATION,
            datetime.combine(day, time.max),
            include_cancelled=False
        )
        now = self.clock()

        free = []
        for template in templates:
            start = slot_start_on(day, template)
            end = start + APPOINTMENT_DURATION
            if format_slot(start, APPOINTMENT_DURATION) != template or start <= now:
                continue
            if any(
                intervals_overlap(start, end, appointment.scheduled_start, appointment.scheduled_end)
                for appointment in booked
            ):
                continue
            free.append(template)
        return sorted(free)
