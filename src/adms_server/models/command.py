from dataclasses import dataclass, asdict
from typing import Dict, Any, Optional
from datetime import datetime


class CommandStatus:
    """Lifecycle: pending -> sent -> success | dead_letter | cancelled (pending again on retry)"""
    PENDING = 'pending'
    SENT = 'sent'
    SUCCESS = 'success'
    DEAD_LETTER = 'dead_letter'
    CANCELLED = 'cancelled'

    COMPLETED = (SUCCESS, DEAD_LETTER)


class Priority:
    """Lower value is dequeued first"""
    CRITICAL = 1  # deletions
    HIGH = 3  # identity and biometric enrollment
    NORMAL = 5
    LOW = 7  # bulk queries
    BACKGROUND = 9


class CommandType:
    USER_INFO = 'USERINFO'
    FACE = 'FACE'
    FINGERPRINT = 'FINGERTMP'
    BIODATA = 'BIODATA'
    DELETE = 'DELETE'
    QUERY = 'QUERY'
    OTHER = 'OTHER'


@dataclass
class DeviceCommand:
    """Command waiting for, or delivered to, a terminal"""

    device_serial: str
    command: str
    status: str = CommandStatus.PENDING
    priority: int = Priority.NORMAL
    sequence: int = 0
    retry_count: int = 0
    max_retries: int = 3
    next_retry_at: Optional[datetime] = None
    last_error: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_wire(self) -> str:
        """Poll response line: C:<id>:<command>"""
        return f"C:{self.id}:{self.command}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses"""
        data = asdict(self)
        for key in ('next_retry_at', 'created_at', 'sent_at', 'completed_at'):
            if isinstance(data[key], datetime):
                data[key] = data[key].strftime('%Y-%m-%d %H:%M:%S')
        return data


@dataclass
class PlannedCommand:
    """A command a producer wants enqueued as part of an atomic batch"""

    device_serial: str
    command: str
    priority: Optional[int] = None
    sequence: int = 0
    max_retries: Optional[int] = None
