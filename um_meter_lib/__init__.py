"""
um_meter_lib - Python driver core for RDTech UM-series USB power meters.

Supports the UM24C poll protocol (one request byte, 130-byte binary frame).
"""

from um_meter_lib.controller import MeterController
from um_meter_lib.errors import (
    DeviceNotFound,
    FrameLengthMismatch,
    FrameMarkerMismatch,
    InvalidConfigValue,
    InvalidProfile,
    ProbeMismatch,
    TransportError,
)
from um_meter_lib.models import (
    AcquisitionState,
    ChannelDescriptor,
    DataType,
    DeviceProfile,
    Measurement,
    Quantity,
    Reading,
    Unit,
)
from um_meter_lib.profiles import DEFAULT_REGISTRY, UM24C_PROFILE, ProfileRegistry

__version__ = "0.1.0"

__all__ = [
    "MeterController",
    "DeviceProfile",
    "ChannelDescriptor",
    "DataType",
    "Quantity",
    "Unit",
    "Measurement",
    "Reading",
    "AcquisitionState",
    "ProfileRegistry",
    "DEFAULT_REGISTRY",
    "UM24C_PROFILE",
    "TransportError",
    "DeviceNotFound",
    "ProbeMismatch",
    "FrameLengthMismatch",
    "FrameMarkerMismatch",
    "InvalidProfile",
    "InvalidConfigValue",
]
