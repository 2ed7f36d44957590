from dataclasses import dataclass, asdict
from typing import Optional
from datetime import datetime


@dataclass
class Employee:
    """Directory entry used to build identity commands for terminals"""

    employee_code: str
    name: str = "Unknown"
    privilege: int = 0
    password: str = ""
    card_number: str = ""
    has_fingerprint: bool = False
    has_face: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self):
        """Convert to dictionary for API responses; the password is never exposed"""
        data = asdict(self)
        data.pop("password")
        for key in ("created_at", "updated_at"):
            if isinstance(data[key], datetime):
                data[key] = data[key].strftime("%Y-%m-%d %H:%M:%S")
        return data
