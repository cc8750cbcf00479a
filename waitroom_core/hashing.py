"""
Hashing Utilities
=================
Hex SHA-256 hashing and timestamp conversions used by every signature.
"""

import hashlib
from datetime import datetime, timezone

ISO_Z_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def sha256_hex(value: str) -> str:
    """
    Hash a string with SHA-256.

    Args:
        value: Text to hash, encoded as UTF-8

    Returns:
        Lowercase hex digest
    """
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def to_utc(dt: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC. Naive values are taken to already be UTC.

    Raises:
        ValueError: If the offset pushes the value outside the supported range
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    try:
        return dt.astimezone(timezone.utc)
    except OverflowError as e:
        raise ValueError(f"Timestamp out of range: {dt.isoformat()}") from e


def to_unix_timestamp(dt: datetime) -> int:
    """Convert a datetime to whole Unix seconds."""
    return int(to_utc(dt).timestamp())


def from_unix_timestamp(seconds: int) -> datetime:
    """
    Convert Unix seconds to an aware UTC datetime.

    Raises:
        ValueError: If the value is outside the supported date range
    """
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError) as e:
        raise ValueError(f"Unix timestamp out of range: {seconds}") from e


def format_iso_z(dt: datetime) -> str:
    """Format as ``YYYY-MM-DDTHH:MM:SSZ`` in UTC, second precision."""
    return to_utc(dt).strftime(ISO_Z_FORMAT)


def parse_iso_timestamp(value: str) -> datetime:
    """
    Parse an ISO 8601 timestamp into an aware UTC datetime.

    Accepts a literal ``Z`` suffix or a numeric offset.

    Raises:
        ValueError: If the value is not a timestamp
    """
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    return to_utc(datetime.fromisoformat(text))


def minutes_between(earlier: datetime, later: datetime) -> int:
    """Whole minutes from earlier to later, truncated toward zero."""
    return int((to_utc(later) - to_utc(earlier)).total_seconds() / 60)
