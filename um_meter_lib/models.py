"""Data models for the UM-series meter library."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterator, Optional, Sequence, Tuple

from um_meter_lib.errors import InvalidProfile


class DataType(Enum):
    """Encoded width of a channel field (big-endian unsigned on the wire)."""

    UINT8 = 1
    UINT16 = 2
    UINT32 = 4

    @property
    def width(self) -> int:
        """Field width in bytes."""
        return self.value


class Quantity(Enum):
    """Physical quantity measured by a channel."""

    VOLTAGE = "voltage"
    CURRENT = "current"
    TEMPERATURE = "temperature"
    ENERGY = "energy"


class Unit(Enum):
    """Unit a decoded channel value is expressed in."""

    VOLT = "V"
    AMPERE = "A"
    CELSIUS = "°C"
    WATT_HOUR = "Wh"


class AcquisitionState(Enum):
    """Meter controller connection states."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    ACQUIRING = "acquiring"


@dataclass(frozen=True)
class ChannelDescriptor:
    """Static description of one measurement field inside a poll frame.

    Attributes:
        name: Host channel name (e.g. "V", "I", "D+").
        offset: Byte offset of the field within the frame.
        data_type: Encoded width of the field.
        scale: Factor converting the raw integer to physical units.
        digits: Display precision (digit count after the decimal point).
        quantity: Physical quantity tag.
        unit: Unit tag.
    """

    name: str
    offset: int
    data_type: DataType
    scale: float
    digits: int
    quantity: Quantity
    unit: Unit

    def __post_init__(self) -> None:
        """Validate descriptor values."""
        if not self.name:
            raise InvalidProfile("Channel name must not be empty")
        if self.offset < 0:
            raise InvalidProfile(f"{self.name}: offset must be >= 0, got {self.offset}")
        if not isinstance(self.data_type, DataType):
            raise InvalidProfile(f"{self.name}: illegal data type {self.data_type!r}")
        if self.digits < 0:
            raise InvalidProfile(f"{self.name}: digits must be >= 0, got {self.digits}")

    @property
    def end(self) -> int:
        """Offset one past the last byte of the field."""
        return self.offset + self.data_type.width


@dataclass(frozen=True)
class DeviceProfile:
    """Static description of one meter model's poll frame and channel layout.

    Attributes:
        model_name: Model name reported to the host (e.g. "UM24C").
        poll_period_ms: Minimum spacing between poll requests.
        timeout_ms: How long the probe waits for a full response.
        poll_len: Exact length of a poll response frame.
        poll_start: Marker expected at frame offset 0, or None.
        poll_end: Marker expected at the frame tail, or None.
        channels: Channel descriptors in host channel order.
    """

    model_name: str
    poll_period_ms: int
    timeout_ms: int
    poll_len: int
    poll_start: Optional[bytes]
    poll_end: Optional[bytes]
    channels: Tuple[ChannelDescriptor, ...]

    def __post_init__(self) -> None:
        """Validate frame shape and channel layout once, at definition time."""
        if self.poll_len <= 0:
            raise InvalidProfile(f"{self.model_name}: poll_len must be positive")
        if self.poll_period_ms <= 0 or self.timeout_ms <= 0:
            raise InvalidProfile(
                f"{self.model_name}: poll_period_ms and timeout_ms must be positive"
            )

        if self.poll_start_len + self.poll_end_len > self.poll_len:
            raise InvalidProfile(
                f"{self.model_name}: markers ({self.poll_start_len}+{self.poll_end_len} bytes) "
                f"do not fit in a {self.poll_len}-byte frame"
            )

        names = set()
        for ch in self.channels:
            if ch.end > self.poll_len:
                raise InvalidProfile(
                    f"{self.model_name}: channel {ch.name} ends at byte {ch.end}, "
                    f"beyond poll_len {self.poll_len}"
                )
            if ch.name in names:
                raise InvalidProfile(f"{self.model_name}: duplicate channel {ch.name}")
            names.add(ch.name)

    @property
    def poll_start_len(self) -> int:
        """Length of the start marker (0 when absent)."""
        return len(self.poll_start) if self.poll_start else 0

    @property
    def poll_end_len(self) -> int:
        """Length of the end marker (0 when absent)."""
        return len(self.poll_end) if self.poll_end else 0

    @property
    def poll_period_s(self) -> float:
        return self.poll_period_ms / 1000.0

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000.0

    @property
    def channel_names(self) -> Tuple[str, ...]:
        """Host channel names in profile order."""
        return tuple(ch.name for ch in self.channels)

    def iter_channels(
        self, names: Optional[Sequence[str]] = None
    ) -> Iterator[ChannelDescriptor]:
        """Iterate channel descriptors in host channel order.

        Args:
            names: Optional host channel names. When given, descriptors are
                   yielded in that order and only for those names.

        Raises:
            KeyError: If a requested name is not part of the profile
        """
        if names is None:
            yield from self.channels
            return

        by_name = {ch.name: ch for ch in self.channels}
        for name in names:
            if name not in by_name:
                raise KeyError(f"{self.model_name} has no channel {name!r}")
            yield by_name[name]


@dataclass(frozen=True)
class Measurement:
    """One decoded channel value, ready for delivery to the host sink."""

    channel: str
    quantity: Quantity
    unit: Unit
    digits: int
    value: float


@dataclass
class Reading:
    """All channel values decoded from one poll frame.

    Attributes:
        ts: UTC timestamp when the frame was decoded.
        model: Meter model name.
        data: Channel name -> physical value, in profile channel order.
    """

    ts: datetime
    model: str
    data: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate reading data."""
        if not self.data:
            raise ValueError("Reading data must contain at least one channel value")
