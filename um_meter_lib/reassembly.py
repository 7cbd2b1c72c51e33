"""Frame reassembly and resynchronization for the UM poll stream.

The meter's byte stream carries no delimiters besides the magic markers at
both ends of each fixed-length frame. FrameAssembler accumulates bytes into a
pre-sized buffer, drops one leading byte at a time while the start marker does
not line up, and hands every complete frame with a valid end marker to its
on_frame callback.
"""

import logging
from typing import Callable

from um_meter_lib import parsing
from um_meter_lib.models import DeviceProfile
from um_meter_lib.transport import Transport

logger = logging.getLogger(__name__)


class FrameAssembler:
    """Accumulates poll response bytes into complete, marker-checked frames.

    Invariant: 0 <= cursor <= poll_len. The buffer is allocated once and
    reused for every frame.
    """

    def __init__(self, profile: DeviceProfile, on_frame: Callable[[bytes], None]) -> None:
        """Initialize assembler.

        Args:
            profile: Profile describing frame length and markers
            on_frame: Called with each complete frame whose markers are valid
        """
        self._profile = profile
        self._on_frame = on_frame
        self._buffer = bytearray(profile.poll_len)
        self._cursor = 0

        self.resyncs = 0
        self.frames_completed = 0
        self.frames_discarded = 0

    @property
    def cursor(self) -> int:
        """Number of bytes of the current frame accumulated so far."""
        return self._cursor

    @property
    def bytes_needed(self) -> int:
        """Bytes still missing from the current frame."""
        return self._profile.poll_len - self._cursor

    def receive(self, transport: Transport) -> int:
        """Drain pending input from the transport without blocking.

        Each read asks for at most the bytes needed to finish the current
        frame, so a read never spills into the next frame.

        Args:
            transport: Transport to read from

        Returns:
            Number of bytes consumed

        Raises:
            TransportError: If a read fails
        """
        consumed = 0
        while True:
            chunk = transport.read_nonblocking(self.bytes_needed)
            if not chunk:
                return consumed
            self.feed(chunk)
            consumed += len(chunk)

    def feed(self, data: bytes) -> int:
        """Append bytes one at a time, resyncing and completing frames.

        Args:
            data: Bytes of any length

        Returns:
            Number of frames handed to on_frame
        """
        frames = 0
        for byte in data:
            if self._append(byte):
                frames += 1
        return frames

    def reset(self) -> None:
        """Discard any partially received frame."""
        if self._cursor:
            logger.debug(f"Discarding partial frame ({self._cursor} bytes)")
        self._cursor = 0

    def _append(self, byte: int) -> bool:
        profile = self._profile
        self._buffer[self._cursor] = byte
        self._cursor += 1

        if (
            profile.poll_start
            and self._cursor == profile.poll_start_len
            and self._buffer[: self._cursor] != profile.poll_start
        ):
            logger.debug(f"Illegal poll header, skipping 1 byte (0x{self._buffer[0]:02x})")
            self._cursor -= 1
            self._buffer[: self._cursor] = self._buffer[1 : self._cursor + 1]
            self.resyncs += 1

        if self._cursor == profile.poll_len:
            return self._complete_frame()

        return False

    def _complete_frame(self) -> bool:
        frame = bytes(self._buffer)
        self._cursor = 0

        if not parsing.frame_has_valid_markers(frame, self._profile):
            logger.warning("Skipping packet with illegal end marker.")
            self.frames_discarded += 1
            return False

        logger.debug(f"Received poll packet (len: {len(frame)})")
        self.frames_completed += 1
        self._on_frame(frame)
        return True
