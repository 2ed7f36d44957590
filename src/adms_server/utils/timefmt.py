"""Timestamp helpers. All timestamps are stored as 'YYYY-MM-DD HH:MM:SS' text."""

from datetime import datetime
from typing import Optional

DB_FORMAT = "%Y-%m-%d %H:%M:%S"

# Formats terminals have been seen to use for punch times
WIRE_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y/%m/%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
)


def to_db(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.strftime(DB_FORMAT)


def now_db(now: Optional[datetime] = None) -> str:
    return to_db(now or datetime.now())


def from_db(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.strptime(str(value)[:19], DB_FORMAT)


def parse_wire_timestamp(text: str) -> datetime:
    """Parse a terminal-supplied timestamp; raises ValueError if no format fits."""
    text = text.strip()
    for fmt in WIRE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    raise ValueError(f"unrecognised timestamp {text!r}")
