from .device import Device, DeviceCapabilities, DeviceStatus, PunchDirection
from .employee import Employee
from .attendance import (
    AttendancePunch,
    DailyAttendanceSummary,
    PunchState,
    SummaryStatus,
    SyncStatus,
)
from .biometric import BiometricTemplate, TemplateType, normalize_payload
from .command import CommandStatus, CommandType, DeviceCommand, PlannedCommand, Priority

__all__ = [
    "Device",
    "DeviceCapabilities",
    "DeviceStatus",
    "PunchDirection",
    "Employee",
    "AttendancePunch",
    "DailyAttendanceSummary",
    "PunchState",
    "SummaryStatus",
    "SyncStatus",
    "BiometricTemplate",
    "TemplateType",
    "normalize_payload",
    "CommandStatus",
    "CommandType",
    "DeviceCommand",
    "PlannedCommand",
    "Priority",
]
