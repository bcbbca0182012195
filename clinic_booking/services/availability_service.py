import logging
from typing import List, Optional, Set

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.exceptions import DoctorNotFound, DuplicateSlot, SlotNotFoundOrNotOwned
from ..core.slots import parse_slot
from ..models.doctor import AvailabilitySlot, Doctor

class AvailabilityCatalog:
    """Recurring daily time slots offered by each doctor."""

    def __init__(self, db: Session, logger: Optional[logging.Logger] = None):
        self.db = db
        self.logger = logger or logging.getLogger(__name__)

    def add_slot(self, doctor_id: int, time_slot: str) -> AvailabilitySlot:
        """Add a ``HH:MM-HH:MM`` template to a doctor's offering."""
        time_slot = (time_slot or "").strip()
        # Malformed input is rejected before anything touches the database
        parse_slot(time_slot)

        self._require_doctor(doctor_id)

        existing = self.db.query(AvailabilitySlot).filter(
            AvailabilitySlot.doctor_id == doctor_id,
            AvailabilitySlot.time_slot == time_slot
        ).first()
        if existing:
            raise DuplicateSlot(doctor_id=doctor_id, time_slot=time_slot)

        slot = AvailabilitySlot(doctor_id=doctor_id, time_slot=time_slot)
        self.db.add(slot)
        try:
            self.db.commit()
        except IntegrityError as exc:
            # Another request added the same template in the meantime
            self.db.rollback()
            raise DuplicateSlot(doctor_id=doctor_id, time_slot=time_slot) from exc
        self.db.refresh(slot)

        self.logger.info(f"Doctor {doctor_id} now offers {time_slot} (slot {slot.id})")
        return slot

    def remove_slot(self, slot_id: int, doctor_id: int) -> None:
        """Delete a template; a doctor can only delete their own."""
        slot = self.db.query(AvailabilitySlot).filter(
            AvailabilitySlot.id == slot_id,
            AvailabilitySlot.doctor_id == doctor_id
        ).first()
        if not slot:
            self.logger.warning(f"Slot {slot_id} not found for doctor {doctor_id} or not owned")
            raise SlotNotFoundOrNotOwned(slot_id=slot_id, doctor_id=doctor_id)

        time_slot = slot.time_slot
        self.db.delete(slot)
        self.db.commit()
        self.logger.info(f"Doctor {doctor_id} removed slot {slot_id} ({time_slot})")

    def list_slots(self, doctor_id: int) -> List[AvailabilitySlot]:
        self._require_doctor(doctor_id)
        return self.db.query(AvailabilitySlot).filter(
            AvailabilitySlot.doctor_id == doctor_id
        ).order_by(AvailabilitySlot.time_slot.asc(), AvailabilitySlot.id.asc()).all()

    def slot_strings(self, doctor_id: int) -> Set[str]:
        return {slot.time_slot for slot in self.list_slots(doctor_id)}

    def filter_doctors_by_template(
        self,
        time: Optional[str] = None,
        name: Optional[str] = None,
        specialty: Optional[str] = None
    ) -> List[Doctor]:
        """Search doctors by offered slot, name and specialty.

        The slot filter compares template strings for equality: ``09:00-10:00``
        does not match a doctor offering ``09:30-10:30``. Name and specialty are
        case-insensitive substring matches. Blank filters are ignored.
        """
        search_time = time.strip() if time and time.strip() else None
        search_name = name.strip() if name and name.strip() else None
        search_specialty = specialty.strip() if specialty and specialty.strip() else None

        query = self.db.query(Doctor)
        if search_name:
            full_name = Doctor.first_name + " " + Doctor.last_name
            query = query.filter(full_name.ilike(f"%{search_name}%"))
        if search_specialty:
            query = query.filter(Doctor.specialization.ilike(f"%{search_specialty}%"))
        if search_time:
            query = query.filter(
                Doctor.available_times.any(AvailabilitySlot.time_slot == search_time)
            )

        doctors = query.order_by(Doctor.id.asc()).all()
        self.logger.debug(
            f"Doctor search time={search_time!r} name={search_name!r} "
            f"specialty={search_specialty!r} matched {len(doctors)}"
        )
        return doctors

    def _require_doctor(self, doctor_id: int) -> Doctor:
        doctor = self.db.get(Doctor, doctor_id)
        if not doctor:
            raise DoctorNotFound(doctor_id=doctor_id)
        return doctor
