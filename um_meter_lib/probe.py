"""One-shot probe that identifies the attached meter model.

The probe sends the request byte once per candidate profile and checks that a
complete frame with the right markers comes back. It never retries; retry
policy belongs to the caller.
"""

import logging
from typing import Optional

from um_meter_lib import parsing, protocol
from um_meter_lib.errors import FrameMarkerMismatch, ProbeMismatch, TransportError
from um_meter_lib.models import DeviceProfile
from um_meter_lib.profiles import DEFAULT_REGISTRY, ProfileRegistry
from um_meter_lib.transport import Transport

logger = logging.getLogger(__name__)


def check_probe_response(response: bytes, profile: DeviceProfile) -> None:
    """Validate a probe response against a profile.

    Raises:
        ProbeMismatch: If the response is short or carries illegal markers
    """
    if len(response) != profile.poll_len:
        raise ProbeMismatch(
            f"Probe response has {len(response)} bytes, expected {profile.poll_len}"
        )

    try:
        parsing.check_frame_markers(response, profile)
    except FrameMarkerMismatch as e:
        raise ProbeMismatch(f"Probe response contains {e}") from e


def probe(
    transport: Transport, registry: ProfileRegistry = DEFAULT_REGISTRY
) -> Optional[DeviceProfile]:
    """Identify the attached meter.

    Args:
        transport: Open transport to the meter
        registry: Candidate profiles, tried in order

    Returns:
        The matching profile, or None if no candidate answered correctly
    """
    for profile in registry.candidates():
        try:
            transport.write(protocol.PROBE_REQUEST, timeout_s=protocol.SERIAL_WRITE_TIMEOUT_S)
        except TransportError as e:
            logger.error(f"Unable to send probe request: {e}")
            return None

        try:
            response = transport.read_blocking(profile.poll_len, timeout_s=profile.timeout_s)
        except TransportError as e:
            logger.error(f"Failed to read probe response: {e}")
            return None

        if len(response) != profile.poll_len:
            logger.error(
                f"Failed to read probe response ({len(response)}/{profile.poll_len} bytes)"
            )
            continue

        try:
            check_probe_response(response, profile)
        except ProbeMismatch as e:
            logger.debug(f"{profile.model_name}: {e}")
            continue

        logger.info(f"Probe matched {profile.model_name}")
        return profile

    return None
