"""Tick-driven poll cycle for one acquisition.

AcquisitionSession owns the per-acquisition state: the frame assembler, the
timestamp of the last poll request and the view of the sample limits. It is
driven entirely by on_tick(), which the owner calls on every I/O readiness
check from a single thread. Nothing in the polling path raises out of a tick;
failures are logged and the next tick carries on.
"""

import logging
import time
from typing import Callable, List, Optional, Sequence

from um_meter_lib import parsing, protocol
from um_meter_lib.errors import FrameLengthMismatch, TransportError
from um_meter_lib.limits import SoftwareLimits
from um_meter_lib.models import DeviceProfile, Measurement
from um_meter_lib.reassembly import FrameAssembler
from um_meter_lib.transport import Transport

logger = logging.getLogger(__name__)


class AcquisitionSession:
    """Poll scheduler, frame dispatch and stop control for one acquisition."""

    def __init__(
        self,
        profile: DeviceProfile,
        transport: Transport,
        on_sample: Callable[[List[Measurement]], None],
        limits: Optional[SoftwareLimits] = None,
        on_stop: Optional[Callable[[], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        channel_names: Optional[Sequence[str]] = None,
    ) -> None:
        """Initialize session (does not poll until start()).

        Args:
            profile: Profile selected by the probe (shared, not owned)
            transport: Open transport to the meter
            on_sample: Receives the decoded measurements of each frame,
                       in host channel order
            limits: Stop condition; defaults to no limits
            on_stop: Called exactly once when the acquisition stops
            clock: Monotonic clock in seconds (injectable for tests)
            channel_names: Host channel order; defaults to profile order
        """
        self._profile = profile
        self._transport = transport
        self._on_sample = on_sample
        self._limits = limits if limits is not None else SoftwareLimits(clock=clock)
        self._on_stop = on_stop
        self._clock = clock
        self._channel_names = tuple(channel_names) if channel_names else None

        self._assembler = FrameAssembler(profile, self._handle_frame)
        self._cmd_sent_at = 0.0
        self._stopped = False
        self.polls_sent = 0

    @property
    def profile(self) -> DeviceProfile:
        return self._profile

    @property
    def assembler(self) -> FrameAssembler:
        return self._assembler

    @property
    def limits(self) -> SoftwareLimits:
        return self._limits

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def samples_read(self) -> int:
        return self._limits.samples_read

    def start(self) -> None:
        """Arm the limits and send the first poll request."""
        logger.info(f"Starting {self._profile.model_name} acquisition")
        self._limits.acquisition_start()
        self.poll()

    def poll(self) -> bool:
        """Send one poll request and record when it went out.

        Returns:
            True if the request was written, False if the write failed
        """
        try:
            self._transport.write(protocol.POLL_REQUEST, timeout_s=protocol.SERIAL_WRITE_TIMEOUT_S)
        except TransportError as e:
            logger.error(f"Unable to send poll request: {e}")
            return False

        self._cmd_sent_at = self._clock()
        self.polls_sent += 1
        return True

    def on_tick(self, bytes_available: bool) -> bool:
        """Run one cycle: drain input, check limits, re-poll when due.

        A lost response is never aborted explicitly. Once poll_period_ms has
        elapsed another request goes out, and any misalignment caused by a
        late reply is absorbed by the assembler's resync.

        Args:
            bytes_available: True if the transport reported pending input

        Returns:
            True while the acquisition keeps running, False once stopped
        """
        if self._stopped:
            return False

        if bytes_available:
            try:
                self._assembler.receive(self._transport)
            except TransportError as e:
                logger.error(f"Failed to read poll data: {e}")

        if self._limits.limit_reached():
            self.stop()
            return False

        elapsed_ms = (self._clock() - self._cmd_sent_at) * 1000.0
        if elapsed_ms > self._profile.poll_period_ms:
            self.poll()

        return True

    def stop(self) -> None:
        """Stop the acquisition and discard any partial frame.

        Safe to call repeatedly; on_stop fires only on the first call.
        """
        if self._stopped:
            return

        self._stopped = True
        self._assembler.reset()
        logger.info(
            f"{self._profile.model_name} acquisition stopped "
            f"({self._limits.samples_read} samples, {self.polls_sent} polls)"
        )

        if self._on_stop is not None:
            try:
                self._on_stop()
            except Exception as e:
                logger.error(f"Error in stop callback: {e}", exc_info=True)

    def _handle_frame(self, frame: bytes) -> None:
        """Decode a complete frame and deliver it to the sink."""
        try:
            measurements = parsing.decode_frame(frame, self._profile, self._channel_names)
        except FrameLengthMismatch as e:
            logger.error(str(e))
            return

        try:
            self._on_sample(measurements)
        except Exception as e:
            logger.error(f"Error delivering sample: {e}", exc_info=True)

        self._limits.record_samples_read(1)
