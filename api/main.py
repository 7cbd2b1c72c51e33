"""FastAPI REST interface for UM-series meter acquisition.

Single-process, single-meter lifecycle with thread-safe access to:
- MeterController (probe, limits, poll loop)
- DataStore (pandas DataFrame storage)
- DataRecorder (background copy from controller buffer to store)

Error mapping:
- DeviceNotFound → 404
- InvalidConfigValue → 400
- TransportError → 503
- Other exceptions → 500
"""

import asyncio
import logging
import os
from threading import RLock
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel

from data_store import DataRecorder, DataStore, schema_for
from um_meter_lib import MeterController, __version__
from um_meter_lib.errors import DeviceNotFound, InvalidConfigValue, TransportError
from um_meter_lib.models import AcquisitionState, Reading

# =============================================================================
# Environment Configuration
# =============================================================================

API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "9160"))
DEFAULT_SERIAL_PORT = os.getenv("SERIAL_PORT", "/dev/rfcomm0")
DEFAULT_SERIALCOMM = os.getenv("SERIAL_COMM", "9600/8n1")
MAX_ROWS = int(os.getenv("MAX_ROWS", "100000"))
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://127.0.0.1:3000"
).split(",")
STREAM_INTERVAL_S = float(os.getenv("STREAM_INTERVAL_S", "0.1"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# =============================================================================
# Global Singletons
# =============================================================================

_controller: Optional[MeterController] = None
_store: Optional[DataStore] = None
_recorder: Optional[DataRecorder] = None
_lock = RLock()  # Protects state-changing operations

# =============================================================================
# FastAPI App
# =============================================================================

app = FastAPI(
    title="UM Meter API",
    description="REST interface for RDTech UM-series USB power meters",
    version=__version__
)

# CORS for local dashboards (configurable via CORS_ORIGINS env var)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# =============================================================================
# Request/Response Models
# =============================================================================

class LimitsRequest(BaseModel):
    """Request body for POST /limits."""
    limit_samples: Optional[int] = None
    limit_msec: Optional[int] = None


class StatusResponse(BaseModel):
    """Response for GET /status."""
    connected: bool
    recording: bool
    model: str
    state: str
    samples_read: int
    rows: int


class ConnectResponse(BaseModel):
    """Response for POST /connect."""
    status: str
    model: str
    channels: list[str]


class StatsResponse(BaseModel):
    """Response for GET /stats."""
    row_count: int
    start_time: Optional[str]
    end_time: Optional[str]
    duration_s: Optional[float]
    est_sample_rate_hz: Optional[float]
    channels: dict


def _reading_json(reading: Reading) -> dict:
    """Flatten a Reading into the same keys as a stored row."""
    return {"timestamp": reading.ts.isoformat(), "model": reading.model, **reading.data}


# =============================================================================
# Exception Handlers
# =============================================================================

@app.exception_handler(DeviceNotFound)
async def device_not_found_handler(request, exc: DeviceNotFound):
    """Map DeviceNotFound to 404 Not Found."""
    logger.error(f"DeviceNotFound: {exc}")
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidConfigValue)
async def invalid_config_handler(request, exc: InvalidConfigValue):
    """Map InvalidConfigValue to 400 Bad Request."""
    logger.error(f"InvalidConfigValue: {exc}")
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(TransportError)
async def transport_error_handler(request, exc: TransportError):
    """Map TransportError to 503 Service Unavailable."""
    logger.error(f"TransportError: {exc}")
    return JSONResponse(status_code=503, content={"detail": str(exc)})


# =============================================================================
# Read-Only Endpoints
# =============================================================================

@app.get("/status", response_model=StatusResponse)
async def get_status():
    """Get connection state, detected model, sample count and stored rows."""
    connected = _controller is not None and _controller.is_connected()
    recording = _recorder is not None and _recorder.is_running()

    return StatusResponse(
        connected=connected,
        recording=recording,
        model=_controller.model if _controller else "unknown",
        state=_controller.state.value if _controller else AcquisitionState.DISCONNECTED.value,
        samples_read=_controller.samples_read if _controller else 0,
        rows=len(_store) if _store else 0,
    )


@app.get("/latest")
async def get_latest():
    """Get the most recent reading, or {} if no data.

    Falls back to the controller buffer when nothing has been recorded.
    """
    if _store:
        latest = _store.get_latest()
        if latest:
            return latest

    if _controller:
        reading = _controller.read_latest()
        if reading:
            return _reading_json(reading)

    return {}


@app.get("/recent")
async def get_recent(seconds: int = Query(60, ge=1, le=300)):
    """Get recorded readings from the last N seconds (1-300).

    Returns:
        {"rows": [...]}
    """
    if not _store:
        return {"rows": []}

    recent_df = _store.get_recent(seconds=seconds)
    return {"rows": recent_df.to_dict(orient="records")}


@app.get("/stats", response_model=StatsResponse)
async def get_stats():
    """Get summary statistics of recorded data."""
    if not _store:
        raise HTTPException(status_code=404, detail="No data recorded")

    return StatsResponse(**_store.get_stats())


# =============================================================================
# Lifecycle Endpoints
# =============================================================================

@app.post("/connect", response_model=ConnectResponse)
async def connect(
    port: str = Query(DEFAULT_SERIAL_PORT, description="Serial port (e.g., /dev/rfcomm0)"),
    serialcomm: str = Query(DEFAULT_SERIALCOMM, description="Line settings (e.g., 9600/8n1)")
):
    """Open the port and probe for a meter.

    Raises:
        400: If already connected
        404: If no supported meter answers (DeviceNotFound)
        503: If the port cannot be opened (TransportError)
    """
    global _controller, _store

    with _lock:
        if _controller is not None:
            raise HTTPException(status_code=400, detail="Already connected. Disconnect first.")

        logger.info(f"Connecting to {port} ({serialcomm})...")
        controller = MeterController()
        profile = controller.connect(port=port, serialcomm=serialcomm)

        _controller = controller
        _store = DataStore(schema_for(profile), max_rows=MAX_ROWS)

        return ConnectResponse(
            status="connected",
            model=profile.model_name,
            channels=list(profile.channel_names),
        )


@app.post("/limits")
async def set_limits(limits: LimitsRequest):
    """Set acquisition limits (0 disables a limit).

    Raises:
        400: If a value is negative (InvalidConfigValue)
        503: If not connected or acquisition is running
    """
    if not _controller:
        raise HTTPException(status_code=503, detail="Not connected")

    with _lock:
        if limits.limit_samples is not None:
            _controller.set_limit_samples(limits.limit_samples)
        if limits.limit_msec is not None:
            _controller.set_limit_msec(limits.limit_msec)

        return _controller.get_limits()


@app.post("/start")
async def start_acquisition(
    auto_record: bool = Query(True, description="Copy readings into the DataStore")
):
    """Start polling the meter.

    Returns:
        {"status": "started", "model": "...", "recording": bool}

    Raises:
        400: If acquisition is already running
        503: If not connected
    """
    global _recorder

    if not _controller:
        raise HTTPException(status_code=503, detail="Not connected")

    with _lock:
        if _controller.state == AcquisitionState.ACQUIRING:
            raise HTTPException(status_code=400, detail="Acquisition already running")

        # Recorder takes its sequence baseline before the first poll goes out
        recording = False
        if auto_record and _store is not None:
            if _recorder is None or not _recorder.is_running():
                _recorder = DataRecorder(_controller, _store, poll_interval_s=0.2)
                _recorder.start()
            recording = True

        try:
            _controller.start_acquisition()
        except TransportError:
            if _recorder and _recorder.is_running():
                _recorder.stop()
            raise

        logger.info(f"Acquisition started: model={_controller.model}, recording={recording}")
        return {"status": "started", "model": _controller.model, "recording": recording}


@app.post("/stop")
async def stop_acquisition():
    """Stop acquisition; the recorder is stopped first so no reading is lost.

    Raises:
        503: If not connected
    """
    if not _controller:
        raise HTTPException(status_code=503, detail="Not connected")

    with _lock:
        if _recorder and _recorder.is_running():
            _recorder.stop()

        _controller.stop()
        return {"status": "stopped", "samples_read": _controller.samples_read}


@app.post("/disconnect")
async def disconnect():
    """Stop recorder and acquisition, close the port."""
    global _controller, _store, _recorder

    with _lock:
        if _recorder and _recorder.is_running():
            logger.info("Stopping recorder before disconnect...")
            _recorder.stop()
        _recorder = None

        if _controller:
            _controller.disconnect()
            _controller = None

        _store = None
        return {"status": "disconnected"}


@app.get("/export/csv")
async def export_csv():
    """Export recorded data to CSV and return the file."""
    if not _store:
        raise HTTPException(status_code=404, detail="No data recorded")

    path = _store.export_csv()
    return FileResponse(path, media_type="text/csv", filename=os.path.basename(path))


# =============================================================================
# WebSocket Streaming
# =============================================================================

@app.websocket("/stream")
async def websocket_stream(websocket: WebSocket):
    """WebSocket endpoint for real-time streaming of decoded readings.

    Every reading decoded after the client connects is sent once, as JSON
    with keys timestamp, model and one key per channel.

    Usage:
        ws = new WebSocket("ws://localhost:9160/stream");
        ws.onmessage = (event) => {
            const reading = JSON.parse(event.data);
            console.log(reading.V, reading.I, reading.timestamp);
        };
    """
    await websocket.accept()
    logger.info(f"WebSocket client connected: {websocket.client}")

    controller = _controller
    if not controller:
        await websocket.send_json({"error": "Not connected to a meter"})
        await websocket.close()
        return

    try:
        _, next_seq = controller.read_since(0)

        while True:
            readings, next_seq = controller.read_since(next_seq)
            for reading in readings:
                await websocket.send_json(_reading_json(reading))

            await asyncio.sleep(STREAM_INTERVAL_S)

    except WebSocketDisconnect:
        logger.info(f"WebSocket client disconnected: {websocket.client}")
    except Exception as e:
        logger.error(f"WebSocket error: {e}", exc_info=True)
        try:
            await websocket.close()
        except RuntimeError:
            pass


# =============================================================================
# Health Check
# =============================================================================

@app.get("/")
async def root():
    """Service info."""
    return {
        "service": "UM Meter API",
        "version": __version__,
        "status": "online"
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "service": "UM Meter API",
        "version": __version__,
        "status": "online"
    }


# =============================================================================
# Startup/Shutdown Events
# =============================================================================

@app.on_event("startup")
async def startup_event():
    """Log startup configuration."""
    logger.info("=" * 60)
    logger.info("UM Meter API started")
    logger.info(f"Version: {__version__}")
    logger.info(f"Host: {API_HOST}")
    logger.info(f"Port: {API_PORT}")
    logger.info(f"Default Serial Port: {DEFAULT_SERIAL_PORT}")
    logger.info(f"Default Serial Settings: {DEFAULT_SERIALCOMM}")
    logger.info(f"Max Rows: {MAX_ROWS}")
    logger.info(f"CORS Origins: {CORS_ORIGINS}")
    logger.info(f"Log Level: {LOG_LEVEL}")
    logger.info("=" * 60)


@app.on_event("shutdown")
async def shutdown_event():
    """Stop recorder and disconnect on shutdown."""
    logger.info("Shutting down UM Meter API...")

    if _recorder and _recorder.is_running():
        _recorder.stop()

    if _controller and _controller.is_connected():
        try:
            _controller.disconnect()
        except TransportError as e:
            logger.error(f"Error during shutdown: {e}")

    logger.info("Shutdown complete")
