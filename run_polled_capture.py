#!/usr/bin/env python3
"""
Bench Runbook: UM24C Polled Capture
Expected: ~SAMPLE_LIMIT readings at ~10 Hz, then a clean automatic stop
"""

import logging
import time

from um_meter_lib import DeviceNotFound, MeterController

# ============================================================================
# CONFIGURATION - EDIT THIS
# ============================================================================
SERIAL_PORT = "/dev/rfcomm0"  # Bluetooth SPP device bound to the meter
SERIALCOMM = "9600/8n1"
SAMPLE_LIMIT = 50
TIME_LIMIT_MS = 30000  # Safety net if the meter stops answering
LOG_LEVEL = logging.INFO

# ============================================================================
# TEST SCRIPT - DO NOT EDIT BELOW
# ============================================================================

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

print("=" * 70)
print("Bench Runbook: UM24C Polled Capture")
print("=" * 70)
print(f"Port: {SERIAL_PORT}")
print(f"Serial settings: {SERIALCOMM}")
print(f"Sample limit: {SAMPLE_LIMIT}")
print(f"Time limit: {TIME_LIMIT_MS} ms")
print()

controller = MeterController()

try:
    # Step 1: Probe
    print("[1/3] Probing meter...")
    try:
        profile = controller.connect(port=SERIAL_PORT, serialcomm=SERIALCOMM)
    except DeviceNotFound:
        print("✗ FAIL: No UM meter answered the probe request")
        raise SystemExit(1)
    print(f"      Detected: {profile.model_name}")
    print(f"      Channels: {', '.join(profile.channel_names)}")
    print(f"      Poll period: {profile.poll_period_ms} ms")
    print()

    # Step 2: Acquire until a limit stops us
    print("[2/3] Acquiring...")
    controller.set_limit_samples(SAMPLE_LIMIT)
    controller.set_limit_msec(TIME_LIMIT_MS)

    start_time = time.time()
    controller.start_acquisition()

    last_count = 0
    while not controller.wait_until_stopped(timeout=0.5):
        readings = controller.read_buffer_snapshot()
        if len(readings) > last_count:
            latest = readings[-1]
            elapsed = time.time() - start_time
            print(f"      [{elapsed:5.1f}s] Reading #{len(readings)}: "
                  f"V={latest.data['V']:.2f} I={latest.data['I']:.3f} "
                  f"T={latest.data['Temp']:.0f}")
            last_count = len(readings)

    # Step 3: Results
    elapsed = time.time() - start_time
    final_readings = controller.read_buffer_snapshot()
    print()
    print("[3/3] Capture complete! Analyzing results...")
    print(f"      Total readings: {len(final_readings)}")
    print(f"      Duration: {elapsed:.1f}s")

    if len(final_readings) >= 2:
        span = (final_readings[-1].ts - final_readings[0].ts).total_seconds()
        rate = (len(final_readings) - 1) / span if span > 0 else 0
        print(f"      Measured sample rate: {rate:.2f} Hz")
    print()

    if len(final_readings) >= SAMPLE_LIMIT:
        print("✓ PASS: Sample limit reached")
    else:
        print(f"✗ FAIL: Stopped after {len(final_readings)} of {SAMPLE_LIMIT} readings")

finally:
    controller.disconnect()
    print()
    print("Disconnected.")
    print("=" * 70)
