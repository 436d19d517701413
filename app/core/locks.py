from contextlib import contextmanager
from threading import Lock
from typing import Dict, Hashable, Iterator, List


class KeyedLock:
    """Registry of mutexes, one per key, created on demand.

    Booking mutations hold the key ``(doctor_id, appointment_date)`` so the
    availability check and the insert/update that follows it run as a single
    critical section per doctor per day. Unrelated keys never contend.
    """

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: Dict[Hashable, Lock] = {}
        self._holders: Dict[Hashable, int] = {}

    def _checkout(self, key: Hashable) -> Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = Lock()
            self._holders[key] = self._holders.get(key, 0) + 1
            return lock

    def _checkin(self, key: Hashable) -> None:
        with self._guard:
            remaining = self._holders[key] - 1
            if remaining:
                self._holders[key] = remaining
            else:
                del self._holders[key]
                del self._locks[key]

    @contextmanager
    def hold(self, *keys: Hashable) -> Iterator[None]:
        """Acquire every key; sorted order keeps multi-key holders deadlock free."""
        acquired: List[Hashable] = []
        try:
            for key in sorted(set(keys)):
                lock = self._checkout(key)
                try:
                    lock.acquire()
                except BaseException:
                    self._checkin(key)
                    raise
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
                self._checkin(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


booking_locks = KeyedLock()
