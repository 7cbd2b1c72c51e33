"""Schema normalization for meter readings to DataFrame format.

Columns are derived from the device profile so every channel gets its own
column, in host channel order, after the timestamp and model columns.
"""

from datetime import timezone
from typing import Any, Dict, List, Sequence

from um_meter_lib.models import DeviceProfile, Reading

# Columns present for every profile
BASE_COLUMNS = ["timestamp", "model"]


def schema_for(profile: DeviceProfile) -> List[str]:
    """Build the ordered column list for a profile.

    Args:
        profile: Profile of the connected meter

    Returns:
        ["timestamp", "model", <channel names...>]
    """
    return BASE_COLUMNS + list(profile.channel_names)


def reading_to_row(reading: Reading, columns: Sequence[str]) -> Dict[str, Any]:
    """Convert a Reading to a DataFrame row dictionary.

    Timestamps are normalized to UTC ISO 8601. Channels missing from the
    reading become None (NaN in pandas); channels not in columns are dropped.

    Args:
        reading: Reading from the controller buffer
        columns: Column list from schema_for()

    Returns:
        Dictionary with exactly the given columns
    """
    ts = reading.ts
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    else:
        ts = ts.astimezone(timezone.utc)

    row: Dict[str, Any] = {}
    for column in columns:
        if column == "timestamp":
            row[column] = ts.isoformat()
        elif column == "model":
            row[column] = reading.model
        else:
            row[column] = reading.data.get(column)
    return row
