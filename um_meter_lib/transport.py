"""Serial transport layer for UM-series meter communication."""

import logging
from typing import Optional, Protocol

from um_meter_lib import protocol
from um_meter_lib.errors import TransportError

logger = logging.getLogger(__name__)


class SerialLike(Protocol):
    """Protocol for serial port interface (allows test doubles)."""

    timeout: Optional[float]
    write_timeout: Optional[float]

    def write(self, data: bytes) -> Optional[int]:
        """Write bytes to serial port."""
        ...

    def read(self, size: int = 1) -> bytes:
        """Read up to size bytes, blocking until size bytes or timeout."""
        ...

    def flush(self) -> None:
        """Flush output buffer (force transmission)."""
        ...

    def reset_input_buffer(self) -> None:
        """Flush input buffer."""
        ...

    def close(self) -> None:
        """Close serial port."""
        ...

    @property
    def in_waiting(self) -> int:
        """Number of bytes ready to be read without blocking."""
        ...

    @property
    def is_open(self) -> bool:
        """Check if port is open."""
        ...


class Transport:
    """Wrapper around pyserial exposing the meter's transport capability.

    Provides the three primitives the driver core relies on: a write with a
    timeout, a blocking read of an exact length, and a non-blocking read that
    returns whatever is pending. bytes_available() is the readiness check.
    """

    def __init__(self, serial_port: SerialLike) -> None:
        """Initialize transport with a serial port instance.

        Args:
            serial_port: Object implementing SerialLike protocol
                        (e.g., serial.Serial or FakeMeter for testing)
        """
        self._port = serial_port

    @classmethod
    def open(
        cls, port: str, serialcomm: str = protocol.DEFAULT_SERIALCOMM
    ) -> "Transport":
        """Open a real serial port (requires pyserial).

        Args:
            port: Serial port device name (e.g., "/dev/rfcomm0")
            serialcomm: Line settings, e.g. "9600/8n1"

        Returns:
            Transport instance wrapping opened serial port

        Raises:
            TransportError: If port cannot be opened or serialcomm is invalid
        """
        try:
            import serial  # type: ignore
        except ImportError as e:
            raise TransportError("pyserial not installed. Run: pip install pyserial") from e

        try:
            params = protocol.parse_serialcomm(serialcomm)
        except ValueError as e:
            raise TransportError(str(e)) from e

        try:
            ser = serial.Serial(
                port=port,
                baudrate=params.baudrate,
                bytesize=params.bytesize,
                parity=params.parity,
                stopbits=params.stopbits,
                timeout=0,
                write_timeout=protocol.SERIAL_WRITE_TIMEOUT_S,
                rtscts=False,
                dsrdtr=False,
                xonxoff=False,
            )
            logger.info(f"Opened serial port {port} ({serialcomm})")
            return cls(ser)
        except Exception as e:
            raise TransportError(f"Failed to open {port} ({serialcomm}): {e}") from e

    def close(self) -> None:
        """Close the serial port."""
        if self._port.is_open:
            self._port.close()
            logger.info("Closed serial port")

    @property
    def is_open(self) -> bool:
        """Check if port is currently open."""
        return self._port.is_open

    def _ensure_open(self) -> None:
        if not self._port.is_open:
            raise TransportError("Serial port is not open")

    def write(self, data: bytes, timeout_s: float = protocol.SERIAL_WRITE_TIMEOUT_S) -> int:
        """Write raw bytes, failing if they cannot all be queued in time.

        Args:
            data: Raw bytes to send
            timeout_s: Write timeout in seconds

        Returns:
            Number of bytes written

        Raises:
            TransportError: If the write fails or is short
        """
        self._ensure_open()

        try:
            self._port.write_timeout = timeout_s
            sent = self._port.write(data)
            self._port.flush()
        except Exception as e:
            raise TransportError(f"Failed to write to port: {e}") from e

        if sent is not None and sent != len(data):
            raise TransportError(f"Short write: {sent} of {len(data)} bytes")

        logger.debug(f"Sent {len(data)} bytes: {data.hex()}")
        return len(data)

    def read_blocking(self, size: int, timeout_s: float) -> bytes:
        """Read exactly size bytes, or fewer if the timeout expires first.

        Args:
            size: Number of bytes wanted
            timeout_s: Overall read timeout in seconds

        Returns:
            Bytes read (shorter than size on timeout)

        Raises:
            TransportError: If port is closed or read fails
        """
        self._ensure_open()

        previous = self._port.timeout
        try:
            self._port.timeout = timeout_s
            data = self._port.read(size)
        except Exception as e:
            raise TransportError(f"Failed to read from port: {e}") from e
        finally:
            self._port.timeout = previous

        logger.debug(f"Blocking read returned {len(data)}/{size} bytes")
        return data

    def read_nonblocking(self, max_len: int) -> bytes:
        """Read up to max_len bytes that are already pending, without waiting.

        Returns:
            Pending bytes, or b"" when nothing is available

        Raises:
            TransportError: If port is closed or read fails
        """
        if max_len <= 0:
            return b""

        count = min(self.bytes_available(), max_len)
        if count <= 0:
            return b""

        try:
            return self._port.read(count)
        except Exception as e:
            raise TransportError(f"Failed to read from port: {e}") from e

    def bytes_available(self) -> int:
        """Number of inbound bytes pending (readiness notification).

        Raises:
            TransportError: If port is closed or cannot be queried
        """
        self._ensure_open()

        try:
            return self._port.in_waiting
        except Exception as e:
            raise TransportError(f"Failed to query pending input: {e}") from e

    def flush_input(self) -> None:
        """Discard all pending input from device.

        Raises:
            TransportError: If port is closed
        """
        self._ensure_open()

        try:
            self._port.reset_input_buffer()
            logger.debug("Flushed input buffer")
        except Exception as e:
            raise TransportError(f"Failed to flush input: {e}") from e
