"""DataFrame recording layer for UM meter acquisition."""

from data_store.schemas import BASE_COLUMNS, reading_to_row, schema_for
from data_store.store import DataRecorder, DataStore

__all__ = ["BASE_COLUMNS", "schema_for", "reading_to_row", "DataStore", "DataRecorder"]
