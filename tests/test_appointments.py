import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from clinic_booking.core.database import Base
from clinic_booking.core.exceptions import (
    AppointmentNotFound, DoctorNotFound, InvalidAppointmentState, NotOwner,
    PatientNotFound, ScheduleBusy, SlotAlreadyBooked, SlotInPast, SlotNotOffered
)
from clinic_booking.core.locks import ScheduleLocks
from clinic_booking.models.appointment import Appointment, AppointmentCondition, AppointmentStatus
from clinic_booking.models.doctor import AvailabilitySlot, Doctor
from clinic_booking.models.patient import Patient
from clinic_booking.services.appointment_service import AppointmentService
from clinic_booking.services.booking_ledger import BookingLedger

from .conftest import NOW, TOMORROW, at


def live_appointments(db, doctor):
    return db.query(Appointment).filter(
        Appointment.doctor_id == doctor.id,
        Appointment.status != AppointmentStatus.CANCELLED
    ).all()


class TestBooking:

    def test_book_appointment(self, service, make_doctor, make_patient):
        """Test booking an offered future slot."""
        doctor = make_doctor(slots=("09:00-10:00",))
        patient = make_patient()

        appointment = service.book(doctor.id, patient.id, at(9), notes="Follow-up")

        assert appointment.id is not None
        assert appointment.status == AppointmentStatus.SCHEDULED
        assert appointment.scheduled_start == at(9)
        assert appointment.scheduled_end == at(10)
        assert appointment.notes == "Follow-up"

    def test_same_slot_twice_is_rejected(self, db, service, make_doctor, make_patient):
        doctor = make_doctor(slots=("09:00-10:00",))
        service.book(doctor.id, make_patient().id, at(9))

        with pytest.raises(SlotAlreadyBooked):
            service.book(doctor.id, make_patient().id, at(9))

        assert len(live_appointments(db, doctor)) == 1

    def test_mismatched_template(self, service, make_doctor, make_patient):
        doctor = make_doctor(slots=("10:00-11:00",))

        with pytest.raises(SlotNotOffered):
            service.book(doctor.id, make_patient().id, at(9))

    def test_past_start(self, service, make_doctor, make_patient):
        doctor = make_doctor(slots=("08:00-09:00", "09:00-10:00"))

        with pytest.raises(SlotInPast):
            service.book(doctor.id, make_patient().id, NOW)
        with pytest.raises(SlotInPast):
            service.book(doctor.id, make_patient().id, at(9).replace(day=1))

    def test_adjacent_slots_can_both_be_booked(self, db, service, make_doctor, make_patient):
        doctor = make_doctor(slots=("10:00-11:00", "11:00-12:00"))

        service.book(doctor.id, make_patient().id, at(10))
        service.book(doctor.id, make_patient().id, at(11))

        assert len(live_appointments(db, doctor)) == 2

    def test_different_doctors_same_time(self, service, make_doctor, make_patient):
        first = make_doctor()
        second = make_doctor()
        patient = make_patient()

        service.book(first.id, patient.id, at(9))
        service.book(second.id, make_patient().id, at(9))

    def test_seconds_are_truncated(self, service, make_doctor, make_patient):
        doctor = make_doctor()

        appointment = service.book(doctor.id, make_patient().id, at(9).replace(second=30))

        assert appointment.scheduled_start == at(9)

    def test_unknown_doctor(self, service, make_patient):
        with pytest.raises(DoctorNotFound):
            service.book(999, make_patient().id, at(9))

    def test_unknown_patient(self, db, service, make_doctor):
        doctor = make_doctor()

        with pytest.raises(PatientNotFound):
            service.book(doctor.id, 999, at(9))

        assert live_appointments(db, doctor) == []

    def test_database_rejects_double_booking_the_checks_missed(
        self, db, service, monkeypatch, make_doctor, make_patient, add_appointment
    ):
        doctor = make_doctor()
        add_appointment(doctor, make_patient(), at(9))
        monkeypatch.setattr(service.resolver, "ensure_bookable", lambda *args, **kwargs: None)

        with pytest.raises(SlotAlreadyBooked):
            service.book(doctor.id, make_patient().id, at(9))

        assert len(live_appointments(db, doctor)) == 1

    def test_unexpected_error_discards_staged_writes(
        self, db, service, monkeypatch, make_doctor, make_patient
    ):
        doctor = make_doctor()
        save = service.ledger.save

        def save_then_fail(appointment):
            save(appointment)
            raise RuntimeError("storage hiccup")

        monkeypatch.setattr(service.ledger, "save", save_then_fail)

        with pytest.raises(RuntimeError):
            service.book(doctor.id, make_patient().id, at(9))

        assert live_appointments(db, doctor) == []


class TestCancel:

    def test_cancel_frees_the_slot(self, db, service, make_doctor, make_patient):
        doctor = make_doctor()
        first = make_patient()
        second = make_patient()
        appointment = service.book(doctor.id, first.id, at(9))

        cancelled = service.cancel(appointment.id, first.id)
        rebooked = service.book(doctor.id, second.id, at(9))

        assert cancelled.status == AppointmentStatus.CANCELLED
        assert cancelled.cancelled_at == NOW
        assert rebooked.patient_id == second.id
        # The cancelled row is kept
        assert db.query(Appointment).filter_by(doctor_id=doctor.id).count() == 2

    def test_only_the_owner_can_cancel(self, service, make_doctor, make_patient):
        doctor = make_doctor()
        owner = make_patient()
        intruder = make_patient()
        appointment = service.book(doctor.id, owner.id, at(9))

        with pytest.raises(NotOwner):
            service.cancel(appointment.id, intruder.id)

        assert service.ledger.get(appointment.id).status == AppointmentStatus.SCHEDULED

    def test_cancel_twice(self, service, make_doctor, make_patient):
        doctor = make_doctor()
        patient = make_patient()
        appointment = service.book(doctor.id, patient.id, at(9))
        service.cancel(appointment.id, patient.id)

        with pytest.raises(InvalidAppointmentState):
            service.cancel(appointment.id, patient.id)

    def test_unknown_appointment(self, service, make_patient):
        with pytest.raises(AppointmentNotFound):
            service.cancel(999, make_patient().id)


class TestReschedule:

    def test_to_own_current_slot(self, service, make_doctor, make_patient):
        """An appointment never conflicts with itself."""
        doctor = make_doctor()
        patient = make_patient()
        appointment = service.book(doctor.id, patient.id, at(9))

        moved = service.reschedule(appointment.id, at(9), requesting_patient_id=patient.id)

        assert moved.id == appointment.id
        assert moved.scheduled_start == at(9)

    def test_to_another_time(self, db, service, make_doctor, make_patient):
        doctor = make_doctor(slots=("09:00-10:00", "09:30-10:30"))
        patient = make_patient()
        appointment = service.book(doctor.id, patient.id, at(9))

        # Overlaps only the appointment being moved
        moved = service.reschedule(appointment.id, at(9, 30), new_notes="Later please")

        assert moved.id == appointment.id
        assert moved.scheduled_start == at(9, 30)
        assert moved.scheduled_end == at(10, 30)
        assert moved.notes == "Later please"
        assert len(live_appointments(db, doctor)) == 1

    def test_to_another_doctor(self, service, make_doctor, make_patient):
        first = make_doctor()
        second = make_doctor(slots=("14:00-15:00",))
        patient = make_patient()
        appointment = service.book(first.id, patient.id, at(9))

        moved = service.reschedule(appointment.id, at(14), new_doctor_id=second.id)

        assert moved.doctor_id == second.id
        assert service.resolver.bookable_slots_on(first.id, TOMORROW) == ["09:00-10:00"]

    def test_onto_a_taken_slot(self, service, make_doctor, make_patient):
        doctor = make_doctor(slots=("09:00-10:00", "10:00-11:00"))
        patient = make_patient()
        mine = service.book(doctor.id, patient.id, at(9))
        service.book(doctor.id, make_patient().id, at(10))

        with pytest.raises(SlotAlreadyBooked):
            service.reschedule(mine.id, at(10), requesting_patient_id=patient.id)

        unchanged = service.ledger.get(mine.id)
        assert unchanged.scheduled_start == at(9)

    def test_other_patients_appointment(self, service, make_doctor, make_patient):
        doctor = make_doctor()
        appointment = service.book(doctor.id, make_patient().id, at(9))

        with pytest.raises(NotOwner):
            service.reschedule(appointment.id, at(9), requesting_patient_id=make_patient().id)

    def test_cancelled_appointment(self, service, make_doctor, make_patient):
        doctor = make_doctor()
        patient = make_patient()
        appointment = service.book(doctor.id, patient.id, at(9))
        service.cancel(appointment.id, patient.id)

        with pytest.raises(InvalidAppointmentState):
            service.reschedule(appointment.id, at(9))

    def test_into_the_past(self, service, make_doctor, make_patient):
        doctor = make_doctor(slots=("08:00-09:00", "09:00-10:00"))
        appointment = service.book(doctor.id, make_patient().id, at(9))

        with pytest.raises(SlotInPast):
            service.reschedule(appointment.id, NOW)


class TestComplete:

    def test_doctor_completes_appointment(self, service, make_doctor, make_patient):
        doctor = make_doctor()
        patient = make_patient()
        appointment = service.book(doctor.id, patient.id, at(9))

        completed = service.complete(appointment.id, doctor.id)

        assert completed.status == AppointmentStatus.COMPLETED
        with pytest.raises(InvalidAppointmentState):
            service.cancel(appointment.id, patient.id)

    def test_other_doctor_cannot_complete(self, service, make_doctor, make_patient):
        doctor = make_doctor()
        other = make_doctor()
        appointment = service.book(doctor.id, make_patient().id, at(9))

        with pytest.raises(NotOwner):
            service.complete(appointment.id, other.id)


class TestReadViews:

    def test_patient_appointments_by_status(self, service, make_doctor, make_patient):
        doctor = make_doctor(slots=("09:00-10:00", "11:00-12:00"))
        patient = make_patient()
        later = service.book(doctor.id, patient.id, at(11))
        earlier = service.book(doctor.id, patient.id, at(9))
        service.cancel(later.id, patient.id)

        everything = service.appointments_for_patient(patient.id)
        scheduled = service.appointments_for_patient(patient.id, AppointmentStatus.SCHEDULED)

        assert [a.id for a in everything] == [earlier.id, later.id]
        assert [a.id for a in scheduled] == [earlier.id]

    def test_patient_appointments_past_and_future(
        self, service, make_doctor, make_patient, add_appointment
    ):
        doctor = make_doctor(slots=("09:00-10:00", "10:00-11:00"))
        patient = make_patient()
        overdue = add_appointment(doctor, patient, at(9).replace(day=2))
        add_appointment(doctor, patient, at(9).replace(day=3), status=AppointmentStatus.CANCELLED)
        completed = add_appointment(doctor, patient, at(10), status=AppointmentStatus.COMPLETED)
        upcoming = add_appointment(doctor, patient, at(9))

        past = service.appointments_for_patient(patient.id, condition=AppointmentCondition.PAST)
        future = service.appointments_for_patient(patient.id, condition=AppointmentCondition.FUTURE)

        assert [a.id for a in past] == [overdue.id, completed.id]
        assert [a.id for a in future] == [upcoming.id]

    def test_patient_appointments_by_doctor_name(self, service, make_doctor, make_patient):
        house = make_doctor(first_name="Gregory", last_name="House")
        wilson = make_doctor(first_name="James", last_name="Wilson")
        patient = make_patient()
        with_house = service.book(house.id, patient.id, at(9))
        service.book(wilson.id, patient.id, at(9).replace(day=9))

        by_name = service.appointments_for_patient(patient.id, doctor_name="  gregory HOU ")
        by_name_and_time = service.appointments_for_patient(
            patient.id, condition=AppointmentCondition.PAST, doctor_name="house"
        )

        assert [a.id for a in by_name] == [with_house.id]
        assert by_name_and_time == []

    def test_unknown_patient(self, service):
        with pytest.raises(PatientNotFound):
            service.appointments_for_patient(999)

    def test_doctor_schedule_filters_by_patient_name(self, service, make_doctor, make_patient):
        doctor = make_doctor(slots=("09:00-10:00", "10:00-11:00"))
        alice = make_patient(first_name="Alice", last_name="Brown")
        bob = make_patient(first_name="Bob", last_name="Green")
        service.book(doctor.id, alice.id, at(9))
        service.book(doctor.id, bob.id, at(10))

        everyone = service.doctor_schedule(doctor.id, TOMORROW)
        just_alice = service.doctor_schedule(doctor.id, TOMORROW, patient_name="alice b")

        assert [a.patient_id for a in everyone] == [alice.id, bob.id]
        assert [a.patient_id for a in just_alice] == [alice.id]

    def test_upcoming_skips_past_and_cancelled(
        self, service, make_doctor, make_patient, add_appointment
    ):
        doctor = make_doctor(slots=("09:00-10:00", "10:00-11:00"))
        patient = make_patient()
        add_appointment(doctor, patient, at(9).replace(day=2))
        cancelled = service.book(doctor.id, patient.id, at(9))
        service.cancel(cancelled.id, patient.id)
        upcoming = service.book(doctor.id, patient.id, at(10))

        assert [a.id for a in service.upcoming_for_doctor(doctor.id)] == [upcoming.id]

    def test_unknown_doctor_schedule(self, service):
        with pytest.raises(DoctorNotFound):
            service.doctor_schedule(999, TOMORROW)


class TestBookingLedger:

    def test_range_query_can_leave_out_cancelled(self, db, make_doctor, make_patient, add_appointment):
        doctor = make_doctor()
        patient = make_patient()
        live = add_appointment(doctor, patient, at(9))
        add_appointment(doctor, patient, at(9), status=AppointmentStatus.CANCELLED)
        ledger = BookingLedger(db)

        assert len(ledger.find_by_doctor_and_range(doctor.id, at(0), at(23))) == 2
        assert [a.id for a in ledger.find_by_doctor_and_range(
            doctor.id, at(0), at(23), include_cancelled=False
        )] == [live.id]

    def test_delete(self, db, make_doctor, make_patient, add_appointment):
        appointment = add_appointment(make_doctor(), make_patient(), at(9))
        ledger = BookingLedger(db)

        ledger.delete(appointment)
        db.commit()

        assert ledger.get(appointment.id) is None


class TestStorageConstraint:

    def test_two_live_appointments_cannot_share_a_start(
        self, db, make_doctor, make_patient, add_appointment
    ):
        doctor = make_doctor()
        add_appointment(doctor, make_patient(), at(9))

        with pytest.raises(IntegrityError):
            add_appointment(doctor, make_patient(), at(9))
        db.rollback()

    def test_cancelled_rows_do_not_count(self, db, make_doctor, make_patient, add_appointment):
        doctor = make_doctor()
        add_appointment(doctor, make_patient(), at(9), status=AppointmentStatus.CANCELLED)
        add_appointment(doctor, make_patient(), at(9), status=AppointmentStatus.CANCELLED)
        add_appointment(doctor, make_patient(), at(9))

        assert len(live_appointments(db, doctor)) == 1


class TestScheduleLocks:

    def test_one_lock_per_doctor(self):
        locks = ScheduleLocks()

        assert locks.lock_for(1) is locks.lock_for(1)
        assert locks.lock_for(1) is not locks.lock_for(2)

    def test_busy_schedule_times_out(self):
        locks = ScheduleLocks(timeout=0.01)
        locks.lock_for(1).acquire()
        try:
            with pytest.raises(ScheduleBusy):
                with locks.hold(1):
                    pass
            # Other doctors are unaffected
            with locks.hold(2):
                pass
        finally:
            locks.lock_for(1).release()

    def test_busy_schedule_surfaces_from_booking(self, db, clock, make_doctor, make_patient):
        doctor = make_doctor()
        locks = ScheduleLocks(timeout=0.01)
        service = AppointmentService(db, locks=locks, clock=clock)
        locks.lock_for(doctor.id).acquire()
        try:
            with pytest.raises(ScheduleBusy):
                service.book(doctor.id, make_patient().id, at(9))
        finally:
            locks.lock_for(doctor.id).release()


class TestConcurrentBooking:

    def test_only_one_of_two_simultaneous_bookings_wins(self, tmp_path, clock):
        engine = create_engine(
            f"sqlite:///{tmp_path / 'race.db'}",
            connect_args={"check_same_thread": False},
        )
        Base.metadata.create_all(bind=engine)
        Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)

        setup = Session()
        doctor = Doctor(first_name="Ann", last_name="Lee", specialization="GP", email="ann@clinic.org")
        doctor.available_times = [AvailabilitySlot(time_slot="09:00-10:00")]
        patients = [
            Patient(first_name="P", last_name=str(n), email=f"p{n}@clinic.org") for n in range(2)
        ]
        setup.add_all([doctor, *patients])
        setup.commit()
        doctor_id = doctor.id
        patient_ids = [patient.id for patient in patients]
        setup.close()

        locks = ScheduleLocks(timeout=5.0)
        barrier = threading.Barrier(len(patient_ids))
        outcomes = []

        def attempt(patient_id):
            session = Session()
            service = AppointmentService(session, locks=locks, clock=clock)
            barrier.wait()
            try:
                service.book(doctor_id, patient_id, at(9))
                outcomes.append("booked")
            except SlotAlreadyBooked:
                outcomes.append("rejected")
            finally:
                session.close()

        threads = [threading.Thread(target=attempt, args=(pid,)) for pid in patient_ids]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert sorted(outcomes) == ["booked", "rejected"]

        check = Session()
        assert check.query(Appointment).filter_by(doctor_id=doctor_id).count() == 1
        check.close()
        engine.dispose()
