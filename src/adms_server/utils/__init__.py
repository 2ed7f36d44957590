"""Utility functions for the application"""

from .retry import call_with_refresh
from .timefmt import from_db, now_db, parse_wire_timestamp, to_db

__all__ = ['call_with_refresh', 'from_db', 'now_db', 'parse_wire_timestamp', 'to_db']
