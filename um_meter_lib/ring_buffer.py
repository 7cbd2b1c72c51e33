"""Thread-safe ring buffer of decoded meter readings."""

import logging
import threading
from collections import deque
from typing import Deque, List, Optional, Tuple

from um_meter_lib.models import Reading

logger = logging.getLogger(__name__)


class RingBuffer:
    """Bounded FIFO of readings, each tagged with a running sequence number.

    The acquisition loop appends while API and recorder threads read. Once
    maxlen is reached the oldest readings fall off. Sequence numbers let a
    consumer pick up exactly the readings it has not seen yet, even when
    several frames share a timestamp.
    """

    def __init__(self, maxlen: int = 1000) -> None:
        """Initialize ring buffer.

        Args:
            maxlen: Maximum number of readings to store. Defaults to 1000.
        """
        if maxlen <= 0:
            raise ValueError(f"maxlen must be positive, got {maxlen}")

        self._entries: Deque[Tuple[int, Reading]] = deque(maxlen=maxlen)
        self._lock = threading.Lock()
        self._next_seq = 0

    def append(self, reading: Reading) -> int:
        """Append a reading and return its sequence number."""
        with self._lock:
            seq = self._next_seq
            self._entries.append((seq, reading))
            self._next_seq += 1
            return seq

    def snapshot(self) -> List[Reading]:
        """Copy of all buffered readings, oldest first."""
        with self._lock:
            return [reading for _, reading in self._entries]

    def read_since(self, seq: int) -> Tuple[List[Reading], int]:
        """Readings with sequence number >= seq.

        Readings that already fell off the buffer are silently skipped.

        Returns:
            (readings, next_seq) where next_seq is the value to pass next time
        """
        with self._lock:
            readings = [reading for s, reading in self._entries if s >= seq]
            return readings, self._next_seq

    def latest(self) -> Optional[Reading]:
        with self._lock:
            return self._entries[-1][1] if self._entries else None

    def clear(self) -> None:
        """Drop all readings; sequence numbers keep counting."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.debug(f"Cleared {count} readings from buffer")

    @property
    def total_appended(self) -> int:
        """Readings appended since creation, including dropped ones."""
        with self._lock:
            return self._next_seq

    @property
    def maxlen(self) -> int:
        return self._entries.maxlen or 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
