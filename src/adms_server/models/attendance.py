from dataclasses import dataclass, asdict
from typing import Dict, Any, Optional
from datetime import datetime, date


class SyncStatus:
    """Export status constants for attendance punches"""
    PENDING = 'pending'
    SYNCED = 'synced'
    ERROR = 'error'


class PunchState:
    """Punch state codes sent by terminals"""
    CHECK_IN = '0'
    CHECK_OUT = '1'


class SummaryStatus:
    PRESENT = 'Present'
    ABSENT = 'Absent'
    MISS_PUNCH = 'Miss Punch'


@dataclass
class AttendancePunch:
    """One punch; (employee_code, punch_time) is unique"""
    employee_code: str
    punch_time: datetime
    device_serial: Optional[str] = None
    punch_state: str = PunchState.CHECK_IN
    verification_mode: str = '0'
    work_code: str = '0'
    raw_data: Optional[str] = None
    upload_time: Optional[datetime] = None
    sync_status: str = SyncStatus.PENDING
    synced_at: Optional[datetime] = None
    error_message: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses"""
        data = asdict(self)
        for key in ('punch_time', 'upload_time', 'synced_at', 'created_at'):
            if isinstance(data[key], datetime):
                data[key] = data[key].strftime('%Y-%m-%d %H:%M:%S')
        return data


@dataclass
class DailyAttendanceSummary:
    """In/out/late digest for one employee on one day"""
    employee_code: str
    date: date
    status: str
    in_time: Optional[datetime] = None
    out_time: Optional[datetime] = None
    duration_minutes: int = 0
    late_minutes: int = 0
    last_calculated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['date'] = self.date.isoformat()
        for key in ('in_time', 'out_time', 'last_calculated_at'):
            if isinstance(data[key], datetime):
                data[key] = data[key].strftime('%Y-%m-%d %H:%M:%S')
        return data
