"""Tests for FastAPI REST endpoints using FakeMeter (no hardware).

Tests verify:
- Connection lifecycle (connect, disconnect)
- Limits configuration
- Acquisition (start, stop, auto-stop on limit)
- Data access (status, latest, recent, stats, export)
- Error mapping (DeviceNotFound→404, InvalidConfigValue→400, TransportError→503)
- Request limits (recent capped at 300s)
"""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Import API app and reset singletons for testing
from api import main as api_module
from fakes.fake_serial import FakeMeter
from um_meter_lib.errors import TransportError
from um_meter_lib.transport import Transport


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset global singletons before each test."""
    api_module._controller = None
    api_module._store = None
    api_module._recorder = None
    yield
    # Cleanup after test
    if api_module._recorder and api_module._recorder.is_running():
        api_module._recorder.stop()
    if api_module._controller:
        api_module._controller.disconnect()
    api_module._controller = None
    api_module._store = None
    api_module._recorder = None


@pytest.fixture
def client():
    """FastAPI test client."""
    return TestClient(api_module.app)


@pytest.fixture
def fake_meter():
    return FakeMeter(voltage_v=5.02, current_a=0.8)


@pytest.fixture
def monkeypatch_transport(monkeypatch, fake_meter):
    """Monkeypatch Transport.open to use FakeMeter."""
    def mock_open(port: str, serialcomm: str):
        """Return Transport wrapping FakeMeter."""
        return Transport(fake_meter)

    monkeypatch.setattr(Transport, "open", mock_open)


def run_limited_acquisition(client, samples: int = 3) -> None:
    """Connect, acquire a fixed number of samples and stop the recorder."""
    client.post("/connect?port=/dev/fake")
    client.post("/limits", json={"limit_samples": samples})
    client.post("/start")
    assert api_module._controller.wait_until_stopped(timeout=10.0)
    client.post("/stop")


# =============================================================================
# Health Check
# =============================================================================

def test_root_health_check(client):
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["service"] == "UM Meter API"
    assert data["status"] == "online"


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "online"


# =============================================================================
# Connection Lifecycle
# =============================================================================

def test_connect_success(client, monkeypatch_transport):
    """POST /connect probes the meter and reports its channels."""
    response = client.post("/connect?port=/dev/fake&serialcomm=9600/8n1")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "connected"
    assert data["model"] == "UM24C"
    assert data["channels"] == ["V", "I", "D+", "D-", "Temp", "Consumption"]


def test_connect_twice_fails(client, monkeypatch_transport):
    client.post("/connect?port=/dev/fake")
    response = client.post("/connect?port=/dev/fake")
    assert response.status_code == 400
    assert "Already connected" in response.json()["detail"]


def test_connect_no_meter_404(client, monkeypatch_transport, fake_meter):
    """A silent device maps DeviceNotFound to 404."""
    fake_meter.responsive = False

    response = client.post("/connect?port=/dev/fake")

    assert response.status_code == 404
    assert api_module._controller is None


def test_connect_port_error_503(client, monkeypatch):
    def failing_open(port: str, serialcomm: str):
        raise TransportError(f"Failed to open {port}")

    monkeypatch.setattr(Transport, "open", failing_open)

    response = client.post("/connect?port=/dev/missing")

    assert response.status_code == 503
    assert "/dev/missing" in response.json()["detail"]


def test_disconnect_success(client, monkeypatch_transport, fake_meter):
    client.post("/connect?port=/dev/fake")
    response = client.post("/disconnect")
    assert response.status_code == 200
    assert response.json()["status"] == "disconnected"
    assert not fake_meter.is_open


def test_disconnect_while_recording(client, monkeypatch_transport):
    """Disconnect stops recorder and controller."""
    client.post("/connect?port=/dev/fake")
    client.post("/start")

    response = client.post("/disconnect")
    assert response.status_code == 200

    assert api_module._controller is None
    assert api_module._recorder is None


# =============================================================================
# Limits
# =============================================================================

def test_limits_set(client, monkeypatch_transport):
    client.post("/connect?port=/dev/fake")

    response = client.post("/limits", json={"limit_samples": 10, "limit_msec": 5000})

    assert response.status_code == 200
    assert response.json() == {"limit_samples": 10, "limit_msec": 5000}


def test_limits_partial_update(client, monkeypatch_transport):
    client.post("/connect?port=/dev/fake")
    client.post("/limits", json={"limit_samples": 10})

    response = client.post("/limits", json={"limit_msec": 250})

    assert response.json() == {"limit_samples": 10, "limit_msec": 250}


def test_limits_negative_400(client, monkeypatch_transport):
    client.post("/connect?port=/dev/fake")
    response = client.post("/limits", json={"limit_samples": -1})
    assert response.status_code == 400


def test_limits_not_connected(client):
    response = client.post("/limits", json={"limit_samples": 1})
    assert response.status_code == 503


def test_limits_while_acquiring_503(client, monkeypatch_transport):
    client.post("/connect?port=/dev/fake")
    client.post("/start?auto_record=false")

    response = client.post("/limits", json={"limit_samples": 1})

    assert response.status_code == 503
    client.post("/stop")


# =============================================================================
# Acquisition
# =============================================================================

def test_start_acquisition(client, monkeypatch_transport):
    client.post("/connect?port=/dev/fake")

    response = client.post("/start")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "started"
    assert data["model"] == "UM24C"
    assert data["recording"] is True


def test_start_without_recording(client, monkeypatch_transport):
    client.post("/connect?port=/dev/fake")

    response = client.post("/start?auto_record=false")

    assert response.json()["recording"] is False
    assert api_module._recorder is None


def test_start_twice_fails(client, monkeypatch_transport):
    client.post("/connect?port=/dev/fake")
    client.post("/start")

    response = client.post("/start")

    assert response.status_code == 400


def test_start_not_connected(client):
    response = client.post("/start")
    assert response.status_code == 503


def test_stop_acquisition(client, monkeypatch_transport):
    client.post("/connect?port=/dev/fake")
    client.post("/start")

    response = client.post("/stop")

    assert response.status_code == 200
    assert response.json()["status"] == "stopped"
    assert api_module._controller.state.value == "connected"
    assert not api_module._recorder.is_running()


def test_stop_not_connected(client):
    response = client.post("/stop")
    assert response.status_code == 503


def test_limit_stops_acquisition(client, monkeypatch_transport):
    """With limit_samples=3 exactly three rows are recorded."""
    run_limited_acquisition(client, samples=3)

    status = client.get("/status").json()
    assert status["state"] == "connected"
    assert status["samples_read"] == 3
    assert status["rows"] == 3


# =============================================================================
# Status and Data Access
# =============================================================================

def test_status_disconnected(client):
    response = client.get("/status")
    assert response.status_code == 200
    data = response.json()
    assert data["connected"] is False
    assert data["recording"] is False
    assert data["model"] == "unknown"
    assert data["state"] == "disconnected"
    assert data["rows"] == 0


def test_status_connected(client, monkeypatch_transport):
    client.post("/connect?port=/dev/fake")

    data = client.get("/status").json()

    assert data["connected"] is True
    assert data["model"] == "UM24C"
    assert data["state"] == "connected"


def test_status_recording(client, monkeypatch_transport):
    client.post("/connect?port=/dev/fake")
    client.post("/start")

    data = client.get("/status").json()

    assert data["recording"] is True
    assert data["state"] == "acquiring"


def test_latest_no_data(client):
    response = client.get("/latest")
    assert response.status_code == 200
    assert response.json() == {}


def test_latest_with_data(client, monkeypatch_transport):
    run_limited_acquisition(client, samples=2)

    data = client.get("/latest").json()

    assert data["model"] == "UM24C"
    assert data["V"] == pytest.approx(5.02, rel=1e-6)
    assert data["I"] == pytest.approx(0.8, rel=1e-6)
    assert "timestamp" in data


def test_latest_from_controller_buffer(client, monkeypatch_transport):
    """Without recording, /latest falls back to the controller buffer."""
    client.post("/connect?port=/dev/fake")
    client.post("/limits", json={"limit_samples": 1})
    client.post("/start?auto_record=false")
    assert api_module._controller.wait_until_stopped(timeout=10.0)

    data = client.get("/latest").json()

    assert data["V"] == pytest.approx(5.02, rel=1e-6)


def test_recent_no_data(client):
    response = client.get("/recent?seconds=60")
    assert response.status_code == 200
    assert response.json()["rows"] == []


def test_recent_with_data(client, monkeypatch_transport):
    run_limited_acquisition(client, samples=3)

    rows = client.get("/recent?seconds=60").json()["rows"]

    assert len(rows) == 3
    assert all(row["model"] == "UM24C" for row in rows)


def test_recent_capped_at_300s(client):
    response = client.get("/recent?seconds=301")
    assert response.status_code == 422


def test_recent_min_1s(client):
    response = client.get("/recent?seconds=0")
    assert response.status_code == 422


def test_stats_endpoint_no_data(client):
    response = client.get("/stats")
    assert response.status_code == 404


def test_stats_endpoint_with_data(client, monkeypatch_transport):
    run_limited_acquisition(client, samples=3)

    response = client.get("/stats")

    assert response.status_code == 200
    data = response.json()
    assert data["row_count"] == 3
    assert data["channels"]["V"]["mean"] == pytest.approx(5.02, rel=1e-6)
    assert data["start_time"] is not None


# =============================================================================
# Export
# =============================================================================

def test_export_csv_endpoint(client, monkeypatch_transport, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    run_limited_acquisition(client, samples=2)

    response = client.get("/export/csv")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    lines = response.text.strip().splitlines()
    assert lines[0].startswith("timestamp,model,V,I")
    assert len(lines) == 3
    assert list(Path(tmp_path).glob("um_meter_data_*.csv"))


def test_export_csv_no_data(client):
    response = client.get("/export/csv")
    assert response.status_code == 404
