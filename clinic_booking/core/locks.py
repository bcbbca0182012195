"""Per-doctor schedule locks.

Booking is a read-then-write: look for overlapping appointments, then insert.
Holding the doctor's lock across both steps (and the commit) means two requests
for the same doctor are applied one after the other, so the second one sees the
first one's appointment and is rejected. Different doctors never share a lock.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

import redis
from redis.exceptions import LockError

from .config import settings
from .exceptions import ScheduleBusy

logger = logging.getLogger(__name__)

LOCK_KEY_PREFIX = "booking:doctor"


class ScheduleLocks:
    """Process-local locks, one per doctor."""

    def __init__(self, timeout: float = settings.BOOKING_LOCK_TIMEOUT_SECONDS):
        self.timeout = timeout
        self._locks: Dict[int, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def lock_for(self, doctor_id: int) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(doctor_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[doctor_id] = lock
            return lock

    @contextmanager
    def hold(self, doctor_id: int) -> Iterator[None]:
        lock = self.lock_for(doctor_id)
        if not lock.acquire(timeout=self.timeout):
            logger.warning(f"Timed out waiting for schedule lock of doctor {doctor_id}")
            raise ScheduleBusy(doctor_id=doctor_id)
        try:
            yield
        finally:
            lock.release()


class RedisScheduleLocks(ScheduleLocks):
    """Locks shared by every worker process through Redis."""

    def __init__(
        self,
        client: redis.Redis,
        timeout: float = settings.BOOKING_LOCK_TIMEOUT_SECONDS,
    ):
        super().__init__(timeout=timeout)
        self.client = client

    def key_for(self, doctor_id: int) -> str:
        return f"{LOCK_KEY_PREFIX}:{doctor_id}"

    @contextmanager
    def hold(self, doctor_id: int) -> Iterator[None]:
        # The lock expires on its own if a worker dies while holding it
        lock = self.client.lock(
            self.key_for(doctor_id),
            timeout=self.timeout * 3,
            blocking_timeout=self.timeout,
        )
        if not lock.acquire():
            logger.warning(f"Timed out waiting for schedule lock of doctor {doctor_id}")
            raise ScheduleBusy(doctor_id=doctor_id)
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError:
                # The write has already committed; report the expiry, keep the result
                logger.exception(f"Schedule lock of doctor {doctor_id} expired before release")


_schedule_locks: Optional[ScheduleLocks] = None


def get_schedule_locks() -> ScheduleLocks:
    """Return the configured lock backend, created once per process."""
    global _schedule_locks
    if _schedule_locks is None:
        if settings.BOOKING_LOCK_BACKEND == "redis":
            from .database import get_redis

            _schedule_locks = RedisScheduleLocks(get_redis())
        else:
            _schedule_locks = ScheduleLocks()
    return _schedule_locks
