"""Fake serial port that simulates an RDTech UM24C USB power meter.

The simulator answers every 0xF0 request byte with one 130-byte frame built
from its current measurement state. Knobs let tests drop responses, corrupt
end markers, prepend garbage or inject raw noise, to exercise probing, resync
and re-polling without hardware.
"""

import logging
import threading
from typing import Dict, Optional

from um_meter_lib import parsing, protocol
from um_meter_lib.models import DeviceProfile
from um_meter_lib.profiles import UM24C_PROFILE

logger = logging.getLogger(__name__)


class FakeMeter:
    """Deterministic simulator of a UM-series meter behind a serial port.

    Implements the SerialLike interface used by Transport: write(), read(),
    in_waiting, flush(), reset_input_buffer(), close(), is_open.
    """

    def __init__(
        self,
        profile: DeviceProfile = UM24C_PROFILE,
        voltage_v: float = 5.07,
        current_a: float = 0.512,
        dplus_v: float = 0.6,
        dminus_v: float = 0.59,
        temp_c: float = 27.0,
        consumption_wh: float = 1.234,
    ) -> None:
        """Initialize fake meter.

        Args:
            profile: Profile whose frame layout to emulate
            voltage_v: Bus voltage reported in "V"
            current_a: Current reported in "I"
            dplus_v: D+ line voltage
            dminus_v: D- line voltage
            temp_c: Temperature in Celsius
            consumption_wh: Accumulated energy; grows by 1 mWh per frame
        """
        self.profile = profile
        self.values: Dict[str, float] = {
            "V": voltage_v,
            "I": current_a,
            "D+": dplus_v,
            "D-": dminus_v,
            "Temp": temp_c,
            "Consumption": consumption_wh,
        }

        # Failure injection
        self.responsive = True
        self.fail_writes = False
        self.drop_next = 0  # Ignore this many requests
        self.corrupt_end_next = 0  # Send this many frames with a bad end marker
        self.garbage_prefix = b""  # Sent once, before the next frame

        # Counters
        self.requests_received = 0
        self.frames_sent = 0

        # Host-visible output bytes
        self._output = bytearray()
        self._lock = threading.Lock()

        # pyserial-compatible attributes
        self.is_open = True
        self.timeout: Optional[float] = 0
        self.write_timeout: Optional[float] = protocol.SERIAL_WRITE_TIMEOUT_S

    def close(self) -> None:
        """Close the fake serial port."""
        self.is_open = False
        logger.debug("FakeMeter closed")

    def write(self, data: bytes) -> int:
        """Receive request bytes from the host.

        Returns:
            Number of bytes written

        Raises:
            RuntimeError: If the port is closed or fail_writes is set
        """
        if not self.is_open:
            raise RuntimeError("Port is closed")
        if self.fail_writes:
            raise RuntimeError("Write timeout")

        with self._lock:
            for byte in data:
                if byte == protocol.POLL_REQUEST[0]:
                    self.requests_received += 1
                    self._answer_request()
        return len(data)

    def read(self, size: int = 1) -> bytes:
        """Return up to size pending bytes (never waits)."""
        if not self.is_open:
            raise RuntimeError("Port is closed")

        with self._lock:
            chunk = bytes(self._output[:size])
            del self._output[:size]
        return chunk

    @property
    def in_waiting(self) -> int:
        with self._lock:
            return len(self._output)

    def flush(self) -> None:
        """Flush output buffer (no-op, writes are immediate)."""
        pass

    def reset_input_buffer(self) -> None:
        """Discard bytes not yet read by the host."""
        with self._lock:
            self._output.clear()

    # ========================================================================
    # Test Helpers
    # ========================================================================

    def inject(self, data: bytes) -> None:
        """Queue raw bytes for the host (line noise, stale replies)."""
        with self._lock:
            self._output.extend(data)

    def build_frame(self, valid_end: bool = True) -> bytes:
        """Encode the current measurement state as one poll frame."""
        raw_values = {
            ch.name: round(self.values[ch.name] / ch.scale)
            for ch in self.profile.channels
            if ch.name in self.values
        }
        frame = bytearray(parsing.build_frame(self.profile, raw_values))
        if not valid_end and self.profile.poll_end_len:
            frame[-self.profile.poll_end_len :] = bytes(self.profile.poll_end_len)
        return bytes(frame)

    # ========================================================================
    # Internal
    # ========================================================================

    def _answer_request(self) -> None:
        if not self.responsive:
            return
        if self.drop_next > 0:
            self.drop_next -= 1
            logger.debug("FakeMeter dropping request")
            return

        if self.garbage_prefix:
            self._output.extend(self.garbage_prefix)
            self.garbage_prefix = b""

        valid_end = self.corrupt_end_next <= 0
        if not valid_end:
            self.corrupt_end_next -= 1

        self._output.extend(self.build_frame(valid_end=valid_end))
        self.frames_sent += 1

        if "Consumption" in self.values:
            self.values["Consumption"] += 0.001
