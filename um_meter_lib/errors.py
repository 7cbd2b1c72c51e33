"""Custom exceptions for the UM-series meter library."""


class UMMeterError(Exception):
    """Base exception for all UM meter library errors."""

    pass


class TransportError(UMMeterError):
    """Raised when serial communication fails (port closed, write/read error)."""

    pass


class DeviceNotFound(UMMeterError):
    """Raised when no supported meter answers the probe request."""

    pass


class ProbeMismatch(UMMeterError):
    """Raised when a probe response carries an illegal start or end marker."""

    pass


class FrameLengthMismatch(UMMeterError):
    """Raised when a poll frame handed to the decoder has the wrong length."""

    pass


class FrameMarkerMismatch(UMMeterError):
    """Raised when a poll frame's start or end marker does not match the profile."""

    pass


class InvalidProfile(UMMeterError):
    """Raised when a device profile or channel descriptor is inconsistent."""

    pass


class InvalidConfigValue(UMMeterError):
    """Raised when attempting to set an invalid acquisition parameter."""

    pass
