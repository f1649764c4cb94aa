"""Thread-safe count of requests currently being handled."""

import threading
from contextlib import contextmanager


class InFlightCounter:
    """Process-wide in-flight request counter.

    Only used for diagnostics (request logging and /health), never for
    admission control. Use slot() so the decrement happens on every exit path.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._value = 0

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def acquire(self) -> int:
        """Increment and return the number of requests now in flight."""
        with self._lock:
            self._value += 1
            return self._value

    def release(self):
        with self._lock:
            if self._value == 0:
                raise RuntimeError("in-flight counter released more times than acquired")
            self._value -= 1

    @contextmanager
    def slot(self):
        """Hold one in-flight slot for the duration of the with-block."""
        number = self.acquire()
        try:
            yield number
        finally:
            self.release()
