"""Pure functions for decoding and encoding UM poll frames."""

import logging
import struct
from typing import List, Mapping, Optional, Sequence

from um_meter_lib.errors import FrameLengthMismatch, FrameMarkerMismatch
from um_meter_lib.models import ChannelDescriptor, DataType, DeviceProfile, Measurement

logger = logging.getLogger(__name__)

_STRUCT_FORMATS = {
    DataType.UINT8: ">B",
    DataType.UINT16: ">H",
    DataType.UINT32: ">I",
}


def to_float32(value: float) -> float:
    """Round a Python float to the nearest IEEE-754 single precision value."""
    return struct.unpack("<f", struct.pack("<f", value))[0]


def read_raw(frame: bytes, channel: ChannelDescriptor) -> int:
    """Read a channel's raw big-endian unsigned field from a frame.

    Offsets and widths are validated when the profile is defined, so the
    only way to hit an unknown data type is a corrupt profile. That case
    is logged and decoded as 0.

    Args:
        frame: Complete poll frame
        channel: Descriptor of the field to read

    Returns:
        Raw unsigned integer value
    """
    fmt = _STRUCT_FORMATS.get(channel.data_type)
    if fmt is None:
        logger.error(f"{channel.name}: Illegal data type: {channel.data_type!r}")
        return 0

    (raw,) = struct.unpack_from(fmt, frame, channel.offset)
    return raw


def encode_raw(raw: int, channel: ChannelDescriptor) -> bytes:
    """Encode a raw unsigned value the way the meter puts it on the wire.

    Raises:
        ValueError: If raw does not fit in the channel's width
    """
    fmt = _STRUCT_FORMATS.get(channel.data_type)
    if fmt is None:
        raise ValueError(f"{channel.name}: Illegal data type: {channel.data_type!r}")

    try:
        return struct.pack(fmt, raw)
    except struct.error as e:
        raise ValueError(
            f"{channel.name}: raw value {raw} does not fit {channel.data_type.name}"
        ) from e


def decode_frame(
    frame: bytes,
    profile: DeviceProfile,
    channel_names: Optional[Sequence[str]] = None,
) -> List[Measurement]:
    """Decode every channel of a poll frame into physical measurements.

    Args:
        frame: Complete poll frame (markers already validated by the caller)
        profile: Profile describing the frame
        channel_names: Optional host channel order; defaults to profile order

    Returns:
        One Measurement per channel, in host channel order

    Raises:
        FrameLengthMismatch: If frame length differs from profile.poll_len
    """
    if len(frame) != profile.poll_len:
        raise FrameLengthMismatch(
            f"Unexpected poll packet length: {len(frame)} (expected {profile.poll_len})"
        )

    measurements = []
    for ch in profile.iter_channels(channel_names):
        value = to_float32(read_raw(frame, ch) * ch.scale)
        measurements.append(
            Measurement(
                channel=ch.name,
                quantity=ch.quantity,
                unit=ch.unit,
                digits=ch.digits,
                value=value,
            )
        )

    return measurements


def frame_has_valid_markers(frame: bytes, profile: DeviceProfile) -> bool:
    """Check both frame markers; absent markers always match."""
    if profile.poll_start and frame[: profile.poll_start_len] != profile.poll_start:
        return False
    if profile.poll_end and frame[len(frame) - profile.poll_end_len :] != profile.poll_end:
        return False
    return True


def check_frame_markers(frame: bytes, profile: DeviceProfile) -> None:
    """Validate frame markers.

    Raises:
        FrameMarkerMismatch: If the start or end marker is illegal
    """
    if profile.poll_start and frame[: profile.poll_start_len] != profile.poll_start:
        raise FrameMarkerMismatch(
            f"Illegal start marker: {bytes(frame[: profile.poll_start_len]).hex()}"
        )
    if profile.poll_end and frame[len(frame) - profile.poll_end_len :] != profile.poll_end:
        raise FrameMarkerMismatch(
            f"Illegal end marker: {bytes(frame[len(frame) - profile.poll_end_len :]).hex()}"
        )


def build_frame(profile: DeviceProfile, raw_values: Mapping[str, int]) -> bytes:
    """Build a well-formed poll frame carrying the given raw channel values.

    Channels missing from raw_values are left as zero.

    Raises:
        KeyError: If raw_values names a channel the profile does not have
        ValueError: If a raw value does not fit its field
    """
    frame = bytearray(profile.poll_len)
    if profile.poll_start:
        frame[: profile.poll_start_len] = profile.poll_start
    if profile.poll_end:
        frame[profile.poll_len - profile.poll_end_len :] = profile.poll_end

    for ch in profile.iter_channels(list(raw_values)):
        frame[ch.offset : ch.end] = encode_raw(raw_values[ch.name], ch)

    return bytes(frame)
