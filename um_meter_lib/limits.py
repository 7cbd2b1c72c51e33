"""Software acquisition limits (sample count and elapsed time)."""

import logging
import time
from typing import Callable, Optional

from um_meter_lib.errors import InvalidConfigValue

logger = logging.getLogger(__name__)


class SoftwareLimits:
    """Stop condition for an acquisition, checked after every tick.

    A limit of 0 is disabled. With both limits disabled the acquisition runs
    until stopped explicitly.
    """

    def __init__(
        self,
        limit_samples: int = 0,
        limit_msec: int = 0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize limits.

        Args:
            limit_samples: Stop after this many decoded frames (0 = no limit)
            limit_msec: Stop after this many milliseconds (0 = no limit)
            clock: Monotonic clock in seconds (injectable for tests)
        """
        self._clock = clock
        self._limit_samples = 0
        self._limit_msec = 0
        self.limit_samples = limit_samples
        self.limit_msec = limit_msec

        self._samples_read = 0
        self._start_time: Optional[float] = None
        self._reported = False

    @property
    def limit_samples(self) -> int:
        return self._limit_samples

    @limit_samples.setter
    def limit_samples(self, value: int) -> None:
        if value < 0:
            raise InvalidConfigValue(f"limit_samples must be >= 0, got {value}")
        self._limit_samples = int(value)

    @property
    def limit_msec(self) -> int:
        return self._limit_msec

    @limit_msec.setter
    def limit_msec(self, value: int) -> None:
        if value < 0:
            raise InvalidConfigValue(f"limit_msec must be >= 0, got {value}")
        self._limit_msec = int(value)

    @property
    def samples_read(self) -> int:
        """Samples counted since acquisition_start()."""
        return self._samples_read

    def acquisition_start(self) -> None:
        """Reset counters and start the elapsed-time clock."""
        self._samples_read = 0
        self._start_time = self._clock()
        self._reported = False

    def record_samples_read(self, count: int) -> None:
        """Count samples delivered to the host."""
        self._samples_read += count

    def limit_reached(self) -> bool:
        """Check whether any configured limit has been reached."""
        reached = False

        if self._limit_samples and self._samples_read >= self._limit_samples:
            reached = True
        elif self._limit_msec and self._start_time is not None:
            elapsed_ms = (self._clock() - self._start_time) * 1000.0
            reached = elapsed_ms >= self._limit_msec

        if reached and not self._reported:
            logger.info(
                f"Acquisition limit reached after {self._samples_read} samples "
                f"(limit_samples={self._limit_samples}, limit_msec={self._limit_msec})"
            )
            self._reported = True

        return reached
