"""
Test suite for Clinic Booking.

Covers slot parsing, the availability catalog, conflict resolution, the
appointment lifecycle and the HTTP adapter.
"""
import os

# Set environment for testing
os.environ["TESTING"] = "1"
