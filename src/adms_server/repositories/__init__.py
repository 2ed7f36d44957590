from adms_server.repositories.device_repository import DeviceRepository
from adms_server.repositories.capability_repository import CapabilityRepository
from adms_server.repositories.employee_repository import EmployeeRepository
from adms_server.repositories.attendance_repository import AttendanceRepository
from adms_server.repositories.template_repository import TemplateRepository
from adms_server.repositories.command_repository import CommandRepository
from adms_server.repositories.device_log_repository import DeviceLogRepository
from adms_server.repositories.summary_repository import SummaryRepository
from adms_server.repositories.setting_repository import SettingRepository

# Repository instances
device_repo = DeviceRepository()
capability_repo = CapabilityRepository()
employee_repo = EmployeeRepository()
attendance_repo = AttendanceRepository()
template_repo = TemplateRepository()
command_repo = CommandRepository()
device_log_repo = DeviceLogRepository()
summary_repo = SummaryRepository()
setting_repo = SettingRepository()


__all__ = [
    "DeviceRepository",
    "CapabilityRepository",
    "EmployeeRepository",
    "AttendanceRepository",
    "TemplateRepository",
    "CommandRepository",
    "DeviceLogRepository",
    "SummaryRepository",
    "SettingRepository",
    "device_repo",
    "capability_repo",
    "employee_repo",
    "attendance_repo",
    "template_repo",
    "command_repo",
    "device_log_repo",
    "summary_repo",
    "setting_repo",
]
