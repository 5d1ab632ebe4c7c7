"""
Monotonic unique ids for versioned table names.
"""
import threading
import time


class UniqueIdGenerator:
    """
    Millisecond timestamp combined with a per-millisecond sequence.

    Ids are strictly increasing within a process, even when the wall clock
    steps backwards.
    """

    SEQUENCE_BITS = 12

    def __init__(self, clock=time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._last_ms = -1
        self._sequence = 0

    def next_id(self) -> int:
        with self._lock:
            now_ms = max(int(self._clock() * 1000), self._last_ms)
            if now_ms == self._last_ms:
                self._sequence += 1
                if self._sequence >= 1 << self.SEQUENCE_BITS:
                    now_ms += 1
                    self._sequence = 0
            else:
                self._sequence = 0
            self._last_ms = now_ms
            return (now_ms << self.SEQUENCE_BITS) | self._sequence
