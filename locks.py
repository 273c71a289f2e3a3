# locks.py
import threading
from contextlib import contextmanager

from errors import LockTimeout


class KeyedLocks:
    """One mutex per key, created on first use.

    Holders of different keys never wait on each other; holders of the same
    key are serialized, and a waiter gives up after ``timeout`` seconds.
    """

    def __init__(self, timeout: float):
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks = {}

    def _lock_for(self, key) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, key, timeout: float = None):
        lock = self._lock_for(key)
        wait = self.timeout if timeout is None else timeout
        if not lock.acquire(timeout=wait):
            raise LockTimeout(f"could not acquire exclusive access to {key} within {wait}s")
        try:
            yield
        finally:
            lock.release()

    def discard(self, key):
        """Forget the lock of a key that will never be used again."""
        with self._guard:
            lock = self._locks.get(key)
            if lock is not None and not lock.locked():
                del self._locks[key]
