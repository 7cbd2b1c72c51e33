"""High-level controller for UM-series meters with state management."""

import logging
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from um_meter_lib import protocol
from um_meter_lib.errors import DeviceNotFound, TransportError
from um_meter_lib.limits import SoftwareLimits
from um_meter_lib.models import AcquisitionState, DeviceProfile, Measurement, Reading
from um_meter_lib.probe import probe
from um_meter_lib.profiles import DEFAULT_REGISTRY, ProfileRegistry
from um_meter_lib.ring_buffer import RingBuffer
from um_meter_lib.session import AcquisitionSession
from um_meter_lib.transport import SerialLike, Transport

logger = logging.getLogger(__name__)


class MeterController:
    """High-level controller orchestrating a UM meter acquisition.

    connect() probes the meter and selects its profile. start_acquisition()
    hands the transport to an AcquisitionSession driven by a single loop
    thread; that thread is the only one touching the session. Decoded frames
    land in a thread-safe ring buffer as Reading objects.
    """

    def __init__(
        self,
        transport: Optional[Transport] = None,
        buffer_size: int = 10000,
        registry: ProfileRegistry = DEFAULT_REGISTRY,
    ) -> None:
        """Initialize controller.

        Args:
            transport: Optional pre-configured Transport instance.
                      If None, connect() creates one.
            buffer_size: Maximum number of readings to buffer. Default 10000.
            registry: Profiles the probe may select from.
        """
        self._transport = transport
        self._registry = registry
        self._state = AcquisitionState.DISCONNECTED
        self._profile: Optional[DeviceProfile] = None

        self._buffer = RingBuffer(maxlen=buffer_size)
        self._limits = SoftwareLimits()

        # Acquisition loop
        self._session: Optional[AcquisitionSession] = None
        self._loop_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._stopped_event = threading.Event()
        self._stopped_event.set()

        self._state_lock = threading.Lock()

        # Connection params for reconnection
        self._last_port: Optional[str] = None
        self._last_serialcomm: str = protocol.DEFAULT_SERIALCOMM

    # ========================================================================
    # Connection Management
    # ========================================================================

    def connect(
        self,
        port: Optional[str] = None,
        serialcomm: str = protocol.DEFAULT_SERIALCOMM,
        serial_port: Optional[SerialLike] = None,
    ) -> DeviceProfile:
        """Open the port and probe for a supported meter.

        Args:
            port: Serial port name (e.g., "/dev/rfcomm0"). Required if serial_port not given.
            serialcomm: Line settings, default "9600/8n1".
            serial_port: Pre-configured serial port object (for testing). If provided,
                        port and serialcomm are ignored.

        Returns:
            Profile of the detected meter

        Raises:
            TransportError: If port cannot be opened or already connected
            DeviceNotFound: If no supported meter answers the probe
        """
        with self._state_lock:
            if self._state != AcquisitionState.DISCONNECTED:
                raise TransportError(f"Already connected (state: {self._state.value})")

            if self._transport is None:
                if serial_port is not None:
                    self._transport = Transport(serial_port)
                elif port is not None:
                    self._transport = Transport.open(port, serialcomm)
                    self._last_port = port
                    self._last_serialcomm = serialcomm
                else:
                    raise ValueError("Must provide either 'port' or 'serial_port'")

            logger.info("Probing for meter...")
            self._transport.flush_input()
            profile = probe(self._transport, self._registry)

            if profile is None:
                self._transport.close()
                self._transport = None
                raise DeviceNotFound("No supported meter answered the probe request")

            self._profile = profile
            self._state = AcquisitionState.CONNECTED
            logger.info(f"Connected to {profile.model_name}")
            return profile

    def disconnect(self) -> None:
        """Stop any acquisition, close the port and reset state."""
        with self._state_lock:
            if self._state == AcquisitionState.DISCONNECTED:
                return

            logger.info("Disconnecting from meter...")
            self._stop_loop()

            if self._transport:
                self._transport.close()
                self._transport = None

            self._profile = None
            self._state = AcquisitionState.DISCONNECTED
            logger.info("Disconnected")

    def reconnect(self) -> DeviceProfile:
        """Reconnect and re-probe using the last opened port.

        Raises:
            TransportError: If no port was opened before or reopening fails
            DeviceNotFound: If the meter no longer answers the probe
        """
        if self._last_port is None:
            raise TransportError("Cannot reconnect: no previous connection")

        logger.info(f"Reconnecting to {self._last_port} ({self._last_serialcomm})...")
        self.disconnect()
        return self.connect(port=self._last_port, serialcomm=self._last_serialcomm)

    # ========================================================================
    # Configuration
    # ========================================================================

    def set_limit_samples(self, limit: int) -> None:
        """Stop acquisition after this many frames (0 = unlimited).

        Raises:
            InvalidConfigValue: If limit is negative
            TransportError: If acquisition is running
        """
        self._ensure_not_acquiring()
        self._limits.limit_samples = limit
        logger.info(f"limit_samples set to {limit}")

    def set_limit_msec(self, limit: int) -> None:
        """Stop acquisition after this many milliseconds (0 = unlimited).

        Raises:
            InvalidConfigValue: If limit is negative
            TransportError: If acquisition is running
        """
        self._ensure_not_acquiring()
        self._limits.limit_msec = limit
        logger.info(f"limit_msec set to {limit}")

    def get_limits(self) -> Dict[str, int]:
        return {
            "limit_samples": self._limits.limit_samples,
            "limit_msec": self._limits.limit_msec,
        }

    # ========================================================================
    # Acquisition Control
    # ========================================================================

    def start_acquisition(self) -> None:
        """Start polling the meter from a background loop thread.

        The loop stops by itself once a configured limit is reached.

        Raises:
            TransportError: If not connected or already acquiring
        """
        with self._state_lock:
            if self._state == AcquisitionState.DISCONNECTED:
                raise TransportError("Cannot start acquisition: not connected")
            if self._state == AcquisitionState.ACQUIRING:
                raise TransportError("Acquisition already running")

            assert self._transport is not None and self._profile is not None

            self._session = AcquisitionSession(
                self._profile,
                self._transport,
                on_sample=self._on_sample,
                limits=self._limits,
                on_stop=self._on_session_stop,
            )

            self._stop_event.clear()
            self._stopped_event.clear()
            self._state = AcquisitionState.ACQUIRING
            self._session.start()

            self._loop_thread = threading.Thread(
                target=self._acquisition_loop,
                args=(self._session,),
                name="MeterPollLoop",
                daemon=True,
            )
            self._loop_thread.start()
            logger.debug("Started acquisition loop thread")

    def stop(self) -> None:
        """Stop acquisition and return to CONNECTED state.

        Raises:
            TransportError: If not connected
        """
        with self._state_lock:
            if self._state == AcquisitionState.DISCONNECTED:
                raise TransportError("Cannot stop: not connected")

            logger.info("Stopping acquisition...")
            self._stop_loop()

    def wait_until_stopped(self, timeout: Optional[float] = None) -> bool:
        """Block until the acquisition stops (e.g. a limit was reached).

        Returns:
            True if stopped, False on timeout
        """
        return self._stopped_event.wait(timeout=timeout)

    # ========================================================================
    # Data Access
    # ========================================================================

    def read_buffer_snapshot(self) -> List[Reading]:
        """Get a snapshot of all buffered readings, oldest first."""
        return self._buffer.snapshot()

    def read_since(self, seq: int) -> Tuple[List[Reading], int]:
        """Readings appended at or after sequence number seq.

        Returns:
            (readings, next_seq)
        """
        return self._buffer.read_since(seq)

    def read_latest(self) -> Optional[Reading]:
        return self._buffer.latest()

    def clear_buffer(self) -> None:
        self._buffer.clear()

    @property
    def state(self) -> AcquisitionState:
        """Current connection state."""
        return self._state

    @property
    def profile(self) -> Optional[DeviceProfile]:
        return self._profile

    @property
    def model(self) -> str:
        """Detected model name, or "unknown" before connect()."""
        return self._profile.model_name if self._profile else "unknown"

    @property
    def samples_read(self) -> int:
        return self._limits.samples_read

    def is_connected(self) -> bool:
        """Check if the port is open and a meter was detected."""
        return (
            self._transport is not None
            and self._transport.is_open
            and self._state != AcquisitionState.DISCONNECTED
        )

    # ========================================================================
    # Internal Helpers
    # ========================================================================

    def _ensure_not_acquiring(self) -> None:
        if self._state == AcquisitionState.ACQUIRING:
            raise TransportError("Cannot change limits while acquiring")

    def _on_sample(self, measurements: List[Measurement]) -> None:
        """Session sink: turn one frame's measurements into a Reading."""
        reading = Reading(
            ts=datetime.now(timezone.utc),
            model=self.model,
            data={m.channel: m.value for m in measurements},
        )
        self._buffer.append(reading)
        logger.debug(f"Reading: {reading.data}")

    def _on_session_stop(self) -> None:
        # Runs on the loop thread; stop() may hold _state_lock while joining.
        if self._state == AcquisitionState.ACQUIRING:
            self._state = AcquisitionState.CONNECTED
        self._stopped_event.set()

    def _stop_loop(self) -> None:
        """Signal the loop thread, join it and tear the session down."""
        self._stop_event.set()

        if self._loop_thread and self._loop_thread.is_alive():
            self._loop_thread.join(timeout=protocol.LOOP_JOIN_TIMEOUT_S)
            if self._loop_thread.is_alive():
                logger.warning("Acquisition loop did not stop cleanly")
        self._loop_thread = None

        if self._session is not None:
            self._session.stop()
            self._session = None

        self._stopped_event.set()

    def _acquisition_loop(self, session: AcquisitionSession) -> None:
        """Single-threaded tick loop that owns the session.

        Each tick samples input readiness and lets the session drain input,
        check limits and re-poll. Timing is only sampled here, there is no
        separate timer.
        """
        logger.info(f"Acquisition loop started (thread {threading.get_ident()})")
        assert self._transport is not None
        transport = self._transport

        while not self._stop_event.is_set():
            try:
                available = transport.bytes_available() > 0
            except TransportError as e:
                logger.error(f"Readiness check failed: {e}")
                available = False

            if not session.on_tick(available):
                break

            self._stop_event.wait(timeout=protocol.TICK_INTERVAL_S)

        logger.info("Acquisition loop stopped")
