from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from .errors import TransientError

log = logging.getLogger(__name__)


class ClassLocks:
    """
    In-process mutex per gym class.

    Every operation that reads and then writes a class counter runs while
    holding the lock of that class, and keeps holding it until its
    transaction has committed. Two booking requests for the last seat of the
    same class are therefore serialized; requests for different classes do
    not wait on each other.

    This only serializes callers inside one process. With several processes
    sharing a database the row lock taken by ``SELECT ... FOR UPDATE`` in
    the reservation service is what serializes them.
    """

    def __init__(self, timeout: float | None = 30.0):
        self.timeout = timeout
        self._guard = threading.Lock()
        # one lock per class id ever touched, kept for the life of the process
        self._locks: dict[int, threading.Lock] = {}

    def _lock_for(self, class_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(class_id)
            if lock is None:
                lock = self._locks[class_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, class_id: int) -> Iterator[None]:
        lock = self._lock_for(class_id)
        acquired = lock.acquire(timeout=-1 if self.timeout is None else self.timeout)
        if not acquired:
            log.warning("timed out waiting for the lock of class %s", class_id)
            raise TransientError(f"class {class_id} is busy, retry later")
        try:
            yield
        finally:
            lock.release()
