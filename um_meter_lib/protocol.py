"""Wire protocol constants for RDTech UM-series USB power meters.

The meters answer a single request byte with one fixed-length binary frame.
There is no delimiter other than the magic markers at both ends of the frame.
"""

import re
from dataclasses import dataclass
from typing import Final

# ============================================================================
# Request Bytes
# ============================================================================

# Poll request: one byte, answered by one full frame
POLL_REQUEST: Final[bytes] = b"\xf0"

# Probe request reuses the poll byte
PROBE_REQUEST: Final[bytes] = POLL_REQUEST

# ============================================================================
# Timing Constants (seconds)
# ============================================================================

# Timeout for the one-byte poll/probe write
SERIAL_WRITE_TIMEOUT_S: Final[float] = 0.001

# Interval between readiness checks in the acquisition loop
TICK_INTERVAL_S: Final[float] = 0.02

# Time allowed for the acquisition loop to exit on stop()
LOOP_JOIN_TIMEOUT_S: Final[float] = 5.0

# ============================================================================
# Serial Port Settings
# ============================================================================

# UM meters talk over a Bluetooth SPP link at 9600 baud, 8N1
DEFAULT_SERIALCOMM: Final[str] = "9600/8n1"

# "<baud>/<databits><parity><stopbits>", e.g. "9600/8n1" or "115200/8e2"
RE_SERIALCOMM: Final[re.Pattern[str]] = re.compile(
    r"^(\d+)/([5-8])([nNeEoOmMsS])(1|1\.5|2)$"
)


@dataclass(frozen=True)
class SerialParams:
    """Serial line settings parsed from a serialcomm string."""

    baudrate: int
    bytesize: int
    parity: str
    stopbits: float


def parse_serialcomm(serialcomm: str) -> SerialParams:
    """Parse a serialcomm string such as "9600/8n1".

    Args:
        serialcomm: "<baud>/<databits><parity><stopbits>"

    Returns:
        SerialParams with parity as a pyserial parity letter (N, E, O, M, S)

    Raises:
        ValueError: If the string is malformed or the baud rate is zero
    """
    match = RE_SERIALCOMM.match(serialcomm.strip())
    if not match:
        raise ValueError(f"Invalid serialcomm string: {serialcomm!r}")

    baudrate = int(match.group(1))
    if baudrate <= 0:
        raise ValueError(f"Baud rate must be positive in {serialcomm!r}")

    return SerialParams(
        baudrate=baudrate,
        bytesize=int(match.group(2)),
        parity=match.group(3).upper(),
        stopbits=float(match.group(4)),
    )
