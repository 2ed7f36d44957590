"""Typed record variants decoded from upload bodies."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Union


class RecordFamily(Enum):
    ATTENDANCE = "attendance"
    OPERATION_LOG = "operation_log"
    ERROR_LOG = "error_log"
    BIOMETRIC = "biometric"
    UNKNOWN = "unknown"

    @classmethod
    def from_table(cls, table: Optional[str]) -> "RecordFamily":
        """Map the upload ``table`` discriminator to a family; no table means attendance"""
        if not table:
            return cls.ATTENDANCE
        if table in BIOMETRIC_TABLES:
            return cls.BIOMETRIC
        return _SIMPLE_TABLES.get(table.upper(), cls.UNKNOWN)


BIOMETRIC_TABLES = frozenset(
    ("BIODATA", "FINGERTMP", "FACE", "USERVF", "USERPIC", "facev7", "templatev10")
)

_SIMPLE_TABLES = {
    "ATTLOG": RecordFamily.ATTENDANCE,
    "OPERLOG": RecordFamily.OPERATION_LOG,
    "ERRORLOG": RecordFamily.ERROR_LOG,
}


@dataclass(frozen=True)
class PunchRecord:
    employee_code: str
    punch_time: datetime
    state: str
    verify_mode: str
    work_code: str
    raw: str


@dataclass(frozen=True)
class OperationLogRecord:
    tag: str
    operation_type: str
    operator: str
    log_time: str
    details: str
    raw: str


@dataclass(frozen=True)
class ErrorLogRecord:
    tag: str
    error_code: str
    operator: str
    log_time: str
    details: str
    raw: str


@dataclass(frozen=True)
class TemplateRecord:
    """Biometric template line that passed payload validation"""
    employee_code: str
    template_type: int
    template_no: int
    payload: str
    valid: int
    duress: int
    major_ver: int
    minor_ver: int
    format: int
    index_no: int
    raw: str


@dataclass(frozen=True)
class IdentityRecord:
    """User line without a template; fields are None when the terminal omitted them"""
    employee_code: str
    name: Optional[str]
    privilege: Optional[int]
    card_number: Optional[str]
    password: Optional[str]
    raw: str


@dataclass(frozen=True)
class UnknownRecord:
    table: str
    raw: str


@dataclass(frozen=True)
class ParseError:
    raw: str
    reason: str


Record = Union[
    PunchRecord,
    OperationLogRecord,
    ErrorLogRecord,
    TemplateRecord,
    IdentityRecord,
    UnknownRecord,
    ParseError,
]
