"""
Utility functions for timestamps stored alongside graph rows.
"""
from datetime import datetime, timezone


def utcnow_iso() -> str:
    """
    Get current UTC timestamp as ISO format string.

    Returns:
        ISO format timestamp string (e.g., "2024-01-01T12:00:00.000000Z")
    """
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z"
