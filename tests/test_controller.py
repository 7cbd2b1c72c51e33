"""End-to-end tests for MeterController against FakeMeter (no hardware)."""

from datetime import datetime, timezone

import pytest

from fakes.fake_serial import FakeMeter
from um_meter_lib import MeterController
from um_meter_lib.errors import DeviceNotFound, InvalidConfigValue, TransportError
from um_meter_lib.models import AcquisitionState, Reading
from um_meter_lib.profiles import UM24C_PROFILE
from um_meter_lib.ring_buffer import RingBuffer


@pytest.fixture
def meter():
    return FakeMeter(voltage_v=5.1, current_a=0.25)


@pytest.fixture
def controller(meter):
    ctrl = MeterController()
    ctrl.connect(serial_port=meter)
    yield ctrl
    ctrl.disconnect()


def make_reading(v: float) -> Reading:
    return Reading(ts=datetime.now(timezone.utc), model="UM24C", data={"V": v})


def test_connect_detects_profile(meter) -> None:
    ctrl = MeterController()
    assert ctrl.state == AcquisitionState.DISCONNECTED
    assert ctrl.model == "unknown"

    profile = ctrl.connect(serial_port=meter)

    assert profile is UM24C_PROFILE
    assert ctrl.state == AcquisitionState.CONNECTED
    assert ctrl.model == "UM24C"
    assert ctrl.is_connected()
    ctrl.disconnect()


def test_connect_flushes_stale_input(meter) -> None:
    """Leftover bytes on the port are discarded before probing."""
    meter.inject(b"\x00\x11\x22")
    ctrl = MeterController()

    assert ctrl.connect(serial_port=meter) is UM24C_PROFILE
    ctrl.disconnect()


def test_connect_silent_meter_not_found(meter) -> None:
    meter.responsive = False
    ctrl = MeterController()

    with pytest.raises(DeviceNotFound):
        ctrl.connect(serial_port=meter)

    assert ctrl.state == AcquisitionState.DISCONNECTED
    assert not meter.is_open


def test_connect_twice_rejected(controller, meter) -> None:
    with pytest.raises(TransportError):
        controller.connect(serial_port=meter)


def test_connect_requires_port() -> None:
    with pytest.raises(ValueError):
        MeterController().connect()


def test_reconnect_without_previous_port() -> None:
    with pytest.raises(TransportError):
        MeterController().reconnect()


def test_start_requires_connection() -> None:
    with pytest.raises(TransportError):
        MeterController().start_acquisition()


def test_sample_limit_stops_acquisition(controller, meter) -> None:
    """With limit_samples=5 the loop stops by itself after five frames."""
    controller.set_limit_samples(5)
    controller.start_acquisition()
    assert controller.state == AcquisitionState.ACQUIRING

    assert controller.wait_until_stopped(timeout=10.0)

    assert controller.state == AcquisitionState.CONNECTED
    assert controller.samples_read == 5

    readings = controller.read_buffer_snapshot()
    assert len(readings) == 5
    for r in readings:
        assert r.model == "UM24C"
        assert r.data["V"] == pytest.approx(5.1, rel=1e-6)
        assert r.data["I"] == pytest.approx(0.25, rel=1e-6)
        assert list(r.data) == list(UM24C_PROFILE.channel_names)

    consumption = [r.data["Consumption"] for r in readings]
    assert consumption == sorted(consumption)


def test_time_limit_stops_acquisition(controller) -> None:
    controller.set_limit_msec(300)
    controller.start_acquisition()

    assert controller.wait_until_stopped(timeout=10.0)
    assert controller.state == AcquisitionState.CONNECTED


def test_manual_stop(controller, meter) -> None:
    controller.start_acquisition()
    with pytest.raises(TransportError):
        controller.start_acquisition()

    controller.stop()

    assert controller.state == AcquisitionState.CONNECTED
    assert controller.wait_until_stopped(timeout=0)

    requests = meter.requests_received
    controller.wait_until_stopped(timeout=0.3)
    assert meter.requests_received == requests


def test_restart_after_limit(controller) -> None:
    controller.set_limit_samples(2)
    controller.start_acquisition()
    assert controller.wait_until_stopped(timeout=10.0)

    controller.start_acquisition()
    assert controller.wait_until_stopped(timeout=10.0)

    assert controller.samples_read == 2
    assert len(controller.read_buffer_snapshot()) == 4


def test_limits_locked_while_acquiring(controller) -> None:
    controller.start_acquisition()
    try:
        with pytest.raises(TransportError):
            controller.set_limit_samples(10)
    finally:
        controller.stop()

    controller.set_limit_samples(10)
    controller.set_limit_msec(2000)
    assert controller.get_limits() == {"limit_samples": 10, "limit_msec": 2000}

    with pytest.raises(InvalidConfigValue):
        controller.set_limit_msec(-1)


def test_read_since_and_latest(controller) -> None:
    controller.set_limit_samples(3)
    controller.start_acquisition()
    assert controller.wait_until_stopped(timeout=10.0)

    readings, next_seq = controller.read_since(0)
    assert len(readings) == 3
    assert next_seq == 3
    assert controller.read_latest() is readings[-1]

    more, seq = controller.read_since(next_seq)
    assert more == []
    assert seq == 3

    controller.clear_buffer()
    assert controller.read_buffer_snapshot() == []
    assert controller.read_latest() is None


def test_disconnect_during_acquisition(meter) -> None:
    ctrl = MeterController()
    ctrl.connect(serial_port=meter)
    ctrl.start_acquisition()

    ctrl.disconnect()

    assert ctrl.state == AcquisitionState.DISCONNECTED
    assert not ctrl.is_connected()
    assert not meter.is_open
    assert ctrl.profile is None

    # Idempotent
    ctrl.disconnect()


def test_acquisition_survives_dropped_responses(controller, meter) -> None:
    """Dropped replies and a corrupt frame are recovered by re-polling."""
    meter.drop_next = 2
    meter.corrupt_end_next = 1
    controller.set_limit_samples(3)
    controller.start_acquisition()

    assert controller.wait_until_stopped(timeout=10.0)
    assert controller.samples_read == 3


# ============================================================================
# Ring Buffer
# ============================================================================


def test_ring_buffer_drops_oldest() -> None:
    buf = RingBuffer(maxlen=3)
    for i in range(5):
        buf.append(make_reading(float(i)))

    assert len(buf) == 3
    assert [r.data["V"] for r in buf.snapshot()] == [2.0, 3.0, 4.0]
    assert buf.total_appended == 5

    readings, next_seq = buf.read_since(1)
    assert [r.data["V"] for r in readings] == [2.0, 3.0, 4.0]
    assert next_seq == 5


def test_ring_buffer_clear_keeps_sequence() -> None:
    buf = RingBuffer(maxlen=10)
    buf.append(make_reading(1.0))
    buf.clear()

    assert buf.latest() is None
    assert buf.append(make_reading(2.0)) == 1


def test_ring_buffer_rejects_zero_size() -> None:
    with pytest.raises(ValueError):
        RingBuffer(maxlen=0)
