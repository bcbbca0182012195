import os
from datetime import date, datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set testing environment before the application settings are loaded
os.environ["TESTING"] = "1"
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///./test.db")

from clinic_booking.core.database import Base  # noqa: E402
from clinic_booking.core.locks import ScheduleLocks  # noqa: E402
from clinic_booking.core.slots import APPOINTMENT_DURATION  # noqa: E402
from clinic_booking.models.appointment import Appointment, AppointmentStatus  # noqa: E402
from clinic_booking.models.doctor import AvailabilitySlot, Doctor  # noqa: E402
from clinic_booking.models.patient import Patient  # noqa: E402
from clinic_booking.services.appointment_service import AppointmentService  # noqa: E402

# A fixed "current time" for the booking core: Monday morning
NOW = datetime(2030, 1, 7, 8, 0)
TOMORROW = date(2030, 1, 8)


def at(hour: int, minute: int = 0, day: date = TOMORROW) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def locks():
    return ScheduleLocks(timeout=1.0)


@pytest.fixture
def service(db, locks, clock):
    return AppointmentService(db, locks=locks, clock=clock)


@pytest.fixture
def make_doctor(db):
    counter = {"n": 0}

    def _make_doctor(slots=("09:00-10:00",), **overrides):
        counter["n"] += 1
        fields = {
            "first_name": "Ann",
            "last_name": f"Smith{counter['n']}",
            "specialization": "Cardiology",
            "email": f"doctor{counter['n']}@clinic.org",
        }
        fields.update(overrides)
        doctor = Doctor(**fields)
        doctor.available_times = [AvailabilitySlot(time_slot=slot) for slot in slots]
        db.add(doctor)
        db.commit()
        db.refresh(doctor)
        return doctor

    return _make_doctor


@pytest.fixture
def make_patient(db):
    counter = {"n": 0}

    def _make_patient(**overrides):
        counter["n"] += 1
        fields = {
            "first_name": "Pat",
            "last_name": f"Jones{counter['n']}",
            "email": f"patient{counter['n']}@clinic.org",
        }
        fields.update(overrides)
        patient = Patient(**fields)
        db.add(patient)
        db.commit()
        db.refresh(patient)
        return patient

    return _make_patient


@pytest.fixture
def add_appointment(db):
    """Insert an appointment row directly, bypassing every booking rule."""
    def _add_appointment(doctor, patient, start, status=AppointmentStatus.SCHEDULED):
        appointment = Appointment(
            doctor_id=doctor.id,
            patient_id=patient.id,
            scheduled_start=start,
            scheduled_end=start + APPOINTMENT_DURATION,
            status=status,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _add_appointment
