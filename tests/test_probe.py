"""Tests for the probe/handshake using FakeMeter (no hardware)."""

import pytest

from fakes.fake_serial import FakeMeter
from um_meter_lib import parsing
from um_meter_lib.errors import ProbeMismatch
from um_meter_lib.models import DeviceProfile
from um_meter_lib.probe import check_probe_response, probe
from um_meter_lib.profiles import UM24C_PROFILE, ProfileRegistry
from um_meter_lib.transport import Transport


def test_probe_detects_um24c() -> None:
    """A responsive meter is identified as UM24C after one request."""
    meter = FakeMeter()

    profile = probe(Transport(meter))

    assert profile is UM24C_PROFILE
    assert meter.requests_received == 1


def test_probe_silent_device_not_found() -> None:
    """No response within the timeout means not found."""
    meter = FakeMeter()
    meter.responsive = False

    assert probe(Transport(meter)) is None


def test_probe_short_response_not_found() -> None:
    meter = FakeMeter()
    meter.responsive = False
    meter.inject(meter.build_frame()[:100])

    assert probe(Transport(meter)) is None


def test_probe_bad_start_marker_not_found() -> None:
    """A frame shifted by one byte fails the start marker check."""
    meter = FakeMeter()
    meter.garbage_prefix = b"\x00"

    assert probe(Transport(meter)) is None


def test_probe_bad_end_marker_not_found() -> None:
    meter = FakeMeter()
    meter.corrupt_end_next = 1

    assert probe(Transport(meter)) is None


def test_probe_write_failure_not_found() -> None:
    """A failed write is logged and reported as not found, not raised."""
    meter = FakeMeter()
    meter.fail_writes = True

    assert probe(Transport(meter)) is None
    assert meter.requests_received == 0


def test_probe_closed_port_not_found() -> None:
    meter = FakeMeter()
    meter.close()

    assert probe(Transport(meter)) is None


def test_probe_does_not_retry() -> None:
    """A failed probe sends exactly one request per candidate."""
    meter = FakeMeter()
    meter.drop_next = 1

    assert probe(Transport(meter)) is None
    assert meter.requests_received == 1


def test_probe_walks_candidates() -> None:
    """With several candidates, the first matching profile wins."""
    other = DeviceProfile(
        model_name="OTHER",
        poll_period_ms=100,
        timeout_ms=10,
        poll_len=UM24C_PROFILE.poll_len,
        poll_start=b"\x01\x02",
        poll_end=UM24C_PROFILE.poll_end,
        channels=(),
    )
    meter = FakeMeter()

    profile = probe(Transport(meter), ProfileRegistry([other, UM24C_PROFILE]))

    assert profile is UM24C_PROFILE
    assert meter.requests_received == 2


def test_check_probe_response() -> None:
    frame = parsing.build_frame(UM24C_PROFILE, {"V": 500})
    check_probe_response(frame, UM24C_PROFILE)

    with pytest.raises(ProbeMismatch):
        check_probe_response(frame[:-1], UM24C_PROFILE)
    with pytest.raises(ProbeMismatch):
        check_probe_response(b"\x00" + frame[1:], UM24C_PROFILE)
    with pytest.raises(ProbeMismatch):
        check_probe_response(frame[:-1] + b"\x00", UM24C_PROFILE)
