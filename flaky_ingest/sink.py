"""Append-only output sink for decoded payloads."""

import sys
import threading
from typing import BinaryIO


class OutputSink:
    """Writes whole chunks to a binary stream, one chunk per call.

    Concurrent requests share one sink; the lock keeps each write() call from
    interleaving with another, while separate calls may interleave freely.
    """

    def __init__(self, stream: BinaryIO | None = None):
        self._stream = stream if stream is not None else sys.stdout.buffer
        self._lock = threading.Lock()
        self._lines = 0

    @property
    def lines_written(self) -> int:
        with self._lock:
            return self._lines

    def write(self, data: bytes):
        with self._lock:
            self._stream.write(data)
            self._stream.flush()
            if data.endswith(b"\n"):
                self._lines += 1
