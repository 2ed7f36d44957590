from dataclasses import dataclass, asdict
from typing import Dict, Any, Optional
from datetime import datetime


class DeviceStatus:
    """Liveness states of a terminal"""
    ONLINE = 'online'
    OFFLINE = 'offline'


class PunchDirection:
    """Per-device override applied to punch states"""
    IN = 'in'
    OUT = 'out'
    BOTH = 'both'

    ALL = (IN, OUT, BOTH)


@dataclass
class Device:
    """Terminal registered by serial number"""

    serial_number: str
    name: Optional[str] = None
    status: str = DeviceStatus.OFFLINE
    last_activity: Optional[datetime] = None
    ip_address: Optional[str] = None
    device_model: Optional[str] = None
    firmware_version: Optional[str] = None
    push_version: Optional[str] = None
    punch_direction: str = PunchDirection.BOTH
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses"""
        data = asdict(self)
        for key in ('last_activity', 'created_at', 'updated_at'):
            if isinstance(data[key], datetime):
                data[key] = data[key].strftime('%Y-%m-%d %H:%M:%S')
        return data


@dataclass
class DeviceCapabilities:
    """What a terminal says it can do, refined as biometric uploads arrive"""

    device_serial: str
    device_model: Optional[str] = None
    firmware_version: Optional[str] = None
    face_supported: bool = False
    finger_supported: bool = False
    palm_supported: bool = False
    card_supported: bool = True
    face_major_ver: int = 0  # 0 = unknown
    face_minor_ver: int = 0
    face_format: int = 0
    raw_info: Optional[str] = None
    detected_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ('detected_at', 'updated_at'):
            if isinstance(data[key], datetime):
                data[key] = data[key].strftime('%Y-%m-%d %H:%M:%S')
        return data
