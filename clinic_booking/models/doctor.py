from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from ..core.database import Base

class Doctor(Base):
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)

    # Personal information
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    specialization = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)

    # Professional information
    years_of_experience = Column(Integer, nullable=True)
    qualification = Column(String(255), nullable=True)
    bio = Column(Text, nullable=True)

    # Contact information
    phone_number = Column(String(20), nullable=True)
    office_address = Column(String(255), nullable=True)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    available_times = relationship(
        "AvailabilitySlot",
        back_populates="doctor",
        cascade="all, delete-orphan",
        order_by="AvailabilitySlot.time_slot",
    )
    appointments = relationship("Appointment", back_populates="doctor")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self):
        return f"<Doctor(id={self.id}, name='{self.first_name} {self.last_name}', specialization='{self.specialization}')>"

class AvailabilitySlot(Base):
    """A recurring daily time slot a doctor offers, e.g. ``09:00-10:00``."""
    __tablename__ = "doctor_available_times"
    __table_args__ = (
        UniqueConstraint("doctor_id", "time_slot", name="uq_available_times_doctor_slot"),
    )

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False, index=True)
    time_slot = Column(String(11), nullable=False)

    created_at = Column(DateTime, server_default=func.now())

    doctor = relationship("Doctor", back_populates="available_times")

    def __repr__(self):
        return f"<AvailabilitySlot(id={self.id}, doctor_id={self.doctor_id}, time_slot='{self.time_slot}')>"
