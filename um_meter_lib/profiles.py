"""Static device profiles and the profile registry.

Profiles are immutable and shared read-only by every session that uses them.
The registry is built once at import time and consulted by the probe, which
tries each candidate until one answers with a well-formed frame.
"""

from typing import Iterable, Iterator, Tuple

from um_meter_lib.models import (
    ChannelDescriptor,
    DataType,
    DeviceProfile,
    Quantity,
    Unit,
)

UM24C_POLL_LEN = 0x82

UM24C_CHANNELS: Tuple[ChannelDescriptor, ...] = (
    ChannelDescriptor("V", 0x02, DataType.UINT16, 0.01, 2, Quantity.VOLTAGE, Unit.VOLT),
    ChannelDescriptor("I", 0x04, DataType.UINT16, 0.001, 3, Quantity.CURRENT, Unit.AMPERE),
    ChannelDescriptor("D+", 0x60, DataType.UINT16, 0.01, 2, Quantity.VOLTAGE, Unit.VOLT),
    ChannelDescriptor("D-", 0x62, DataType.UINT16, 0.01, 2, Quantity.VOLTAGE, Unit.VOLT),
    ChannelDescriptor("Temp", 0x0A, DataType.UINT16, 1.0, 0, Quantity.TEMPERATURE, Unit.CELSIUS),
    # Threshold-based recording, reported in mWh
    ChannelDescriptor(
        "Consumption", 0x6A, DataType.UINT32, 0.001, 3, Quantity.ENERGY, Unit.WATT_HOUR
    ),
)

UM24C_PROFILE = DeviceProfile(
    model_name="UM24C",
    poll_period_ms=100,
    timeout_ms=1000,
    poll_len=UM24C_POLL_LEN,
    poll_start=b"\x09\x63",
    poll_end=b"\xff\xf1",
    channels=UM24C_CHANNELS,
)


class ProfileRegistry:
    """Immutable, ordered collection of supported device profiles."""

    def __init__(self, profiles: Iterable[DeviceProfile]) -> None:
        self._profiles: Tuple[DeviceProfile, ...] = tuple(profiles)
        if not self._profiles:
            raise ValueError("ProfileRegistry needs at least one profile")

    def lookup(self) -> DeviceProfile:
        """Return the supported profile.

        Only one profile is supported per registry lookup today; the probe
        walks candidates() so more models can be added without changes there.
        """
        return self._profiles[0]

    def candidates(self) -> Iterator[DeviceProfile]:
        """Iterate probe candidates in registration order."""
        return iter(self._profiles)

    def get(self, model_name: str) -> DeviceProfile:
        """Find a profile by model name.

        Raises:
            KeyError: If no profile has that model name
        """
        for profile in self._profiles:
            if profile.model_name == model_name:
                return profile
        raise KeyError(f"Unknown meter model: {model_name!r}")

    def __iter__(self) -> Iterator[DeviceProfile]:
        return iter(self._profiles)

    def __len__(self) -> int:
        return len(self._profiles)


DEFAULT_REGISTRY = ProfileRegistry([UM24C_PROFILE])
