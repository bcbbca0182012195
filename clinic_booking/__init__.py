"""
Clinic Booking

Appointment-booking backend for a clinic: doctors publish recurring daily
time slots, patients book, reschedule and cancel one-hour appointments against
them, and admins manage doctor records.
"""

__version__ = "1.0.0"
