"""Thread-safe DataFrame store and background recorder for meter readings.

This module provides:
- DataStore: Thread-safe in-memory DataFrame with CSV export
- DataRecorder: Background thread that copies new readings from a
  MeterController buffer into a DataStore

Design notes:
- The recorder tracks the controller buffer's sequence numbers, so frames
  decoded within the same clock tick are never skipped or duplicated
- The meter polls every ~100 ms; a 200 ms recorder interval picks up about
  two readings per pass
"""

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from threading import Event, RLock, Thread
from typing import Iterable, List, Optional, Sequence

import pandas as pd

from data_store.schemas import reading_to_row
from um_meter_lib.controller import MeterController
from um_meter_lib.models import Reading

logger = logging.getLogger(__name__)


class DataStore:
    """Thread-safe in-memory DataFrame store for meter readings.

    Holds one row per decoded frame with columns from schema_for(profile).
    """

    def __init__(self, columns: Sequence[str], max_rows: int = 100000) -> None:
        """Initialize empty DataFrame store.

        Args:
            columns: Ordered column names (see schema_for())
            max_rows: Maximum rows to keep in memory. Older rows are trimmed after appends.
        """
        if "timestamp" not in columns:
            raise ValueError("columns must include 'timestamp'")

        self._lock = RLock()
        self._columns: List[str] = list(columns)
        self._df = self._empty()
        self._max_rows = max_rows

    @property
    def columns(self) -> List[str]:
        return list(self._columns)

    def append_readings(self, readings: Iterable[Reading]) -> int:
        """Append readings and trim to max_rows.

        Returns:
            Number of rows appended
        """
        rows = [reading_to_row(r, self._columns) for r in readings]
        if not rows:
            return 0

        with self._lock:
            new_df = pd.DataFrame(rows, columns=self._columns)
            if self._df.empty:
                self._df = new_df
            else:
                self._df = pd.concat([self._df, new_df], ignore_index=True)

            if len(self._df) > self._max_rows:
                excess = len(self._df) - self._max_rows
                self._df = self._df.iloc[excess:].reset_index(drop=True)
                logger.debug(f"Trimmed {excess} oldest rows, now {len(self._df)} rows")

        return len(rows)

    def get_dataframe(self) -> pd.DataFrame:
        """Get a copy of the entire DataFrame."""
        with self._lock:
            return self._df.copy()

    def get_recent(self, seconds: int = 60) -> pd.DataFrame:
        """Get readings from the last N seconds.

        Args:
            seconds: Number of seconds of recent history to retrieve

        Returns:
            DataFrame containing only readings within the time window
        """
        with self._lock:
            if self._df.empty:
                return self._empty()
            df = self._df.copy()

        stamps = pd.to_datetime(df["timestamp"], format="ISO8601", utc=True)
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=seconds)
        return df[stamps >= cutoff].reset_index(drop=True)

    def get_latest(self) -> Optional[dict]:
        """Get the most recent row as a dictionary, or None if empty."""
        with self._lock:
            if self._df.empty:
                return None
            return self._df.iloc[-1].to_dict()

    def get_stats(self) -> dict:
        """Summary statistics about stored data.

        Returns:
            Dictionary with row_count, start_time, end_time, duration_s and
            est_sample_rate_hz, plus per-channel mean/min/max under "channels"
        """
        with self._lock:
            df = self._df.copy()

        if df.empty:
            return {
                "row_count": 0,
                "start_time": None,
                "end_time": None,
                "duration_s": 0.0,
                "est_sample_rate_hz": 0.0,
                "channels": {},
            }

        timestamps = pd.to_datetime(df["timestamp"], format="ISO8601", utc=True)
        start = timestamps.iloc[0]
        end = timestamps.iloc[-1]
        duration_s = (end - start).total_seconds()

        rate_hz = 0.0
        if duration_s > 0 and len(df) > 1:
            rate_hz = (len(df) - 1) / duration_s

        channels = {}
        for column in self._columns:
            if column in ("timestamp", "model"):
                continue
            series = pd.to_numeric(df[column], errors="coerce").dropna()
            if series.empty:
                continue
            channels[column] = {
                "mean": float(series.mean()),
                "min": float(series.min()),
                "max": float(series.max()),
            }

        return {
            "row_count": len(df),
            "start_time": start.isoformat(),
            "end_time": end.isoformat(),
            "duration_s": duration_s,
            "est_sample_rate_hz": rate_hz,
            "channels": channels,
        }

    def export_csv(self, path: Optional[str] = None) -> str:
        """Export DataFrame to a CSV file.

        Args:
            path: Output file path. If None, generates timestamped filename.

        Returns:
            Absolute path to exported file
        """
        with self._lock:
            if path is None:
                timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
                path = f"um_meter_data_{timestamp}.csv"

            self._df.to_csv(path, index=False)
            abs_path = str(Path(path).resolve())
            logger.info(f"Exported {len(self._df)} rows to CSV: {abs_path}")
            return abs_path

    def clear(self) -> None:
        """Reset to an empty DataFrame, keeping the columns."""
        with self._lock:
            self._df = self._empty()
            logger.debug("DataStore cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._df)

    def _empty(self) -> pd.DataFrame:
        return pd.DataFrame(columns=self._columns)


class DataRecorder:
    """Background recorder that copies new controller readings into a DataStore.

    Every poll_interval_s it asks the controller for readings appended since
    the last pass and appends them to the store. Stop the recorder before
    disconnecting the controller so the last readings are not lost.
    """

    def __init__(
        self,
        controller: MeterController,
        store: DataStore,
        poll_interval_s: float = 0.2,
    ) -> None:
        """Initialize recorder (does not start automatically).

        Args:
            controller: MeterController (acquiring or about to acquire)
            store: DataStore instance to write readings to
            poll_interval_s: Polling interval in seconds (default 200ms)
        """
        self._controller = controller
        self._store = store
        self._poll_interval = poll_interval_s

        self._thread: Optional[Thread] = None
        self._stop_event = Event()
        self._next_seq = 0

    def start(self) -> None:
        """Start background recording thread.

        Only readings decoded after start() are recorded.

        Raises:
            RuntimeError: If recorder is already running
        """
        if self._thread and self._thread.is_alive():
            raise RuntimeError("Recorder already running")

        logger.info(f"Starting DataRecorder (poll interval: {self._poll_interval}s)...")
        self._stop_event.clear()
        _, self._next_seq = self._controller.read_since(0)

        self._thread = Thread(
            target=self._recorder_loop,
            name="DataRecorder",
            daemon=True,
        )
        self._thread.start()

    def stop(self, flush_csv: bool = False) -> Optional[str]:
        """Stop the recording thread after a final pass.

        Args:
            flush_csv: If True, export the store to CSV after stopping

        Returns:
            Path to the CSV file if flush_csv was set, None otherwise
        """
        if not self._thread or not self._thread.is_alive():
            logger.warning("Recorder not running, nothing to stop")
            return None

        logger.info("Stopping DataRecorder...")
        self._stop_event.set()
        self._thread.join(timeout=5.0)

        if self._thread.is_alive():
            logger.warning("DataRecorder thread did not stop cleanly")

        self._thread = None

        flush_path = None
        if flush_csv:
            flush_path = self._store.export_csv()

        logger.info("DataRecorder stopped")
        return flush_path

    def is_running(self) -> bool:
        """Check if recorder thread is active."""
        return self._thread is not None and self._thread.is_alive()

    def record_once(self) -> int:
        """Copy readings appended since the previous pass.

        Returns:
            Number of readings recorded
        """
        readings, self._next_seq = self._controller.read_since(self._next_seq)
        if not readings:
            return 0

        count = self._store.append_readings(readings)
        logger.debug(f"Recorded {count} new readings")
        return count

    def _recorder_loop(self) -> None:
        """Background loop; one last pass runs after stop is requested."""
        logger.info(f"Recorder loop started (thread {threading.get_ident()})")

        while not self._stop_event.wait(timeout=self._poll_interval):
            try:
                self.record_once()
            except Exception as e:
                logger.error(f"Error in recorder loop: {e}", exc_info=True)
                time.sleep(0.5)

        try:
            self.record_once()
        except Exception as e:
            logger.error(f"Final recorder pass failed: {e}", exc_info=True)

        logger.info("Recorder loop stopped")
