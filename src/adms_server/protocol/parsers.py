"""Decoders turning upload bodies into typed records.

Every public function here returns records; malformed lines come back as
``ParseError`` values and never raise.
"""

import re
from typing import List, Optional

from adms_server.config import settings
from adms_server.models.biometric import TemplateType, normalize_payload
from adms_server.protocol.records import (
    ErrorLogRecord,
    IdentityRecord,
    OperationLogRecord,
    ParseError,
    PunchRecord,
    Record,
    RecordFamily,
    TemplateRecord,
    UnknownRecord,
)
from adms_server.protocol.tokenizer import KeyValueLine, tokenize_key_values
from adms_server.shared.exceptions import RecordParseError
from adms_server.utils.timefmt import parse_wire_timestamp, to_db

# id, "date time", state, verify mode, work code
PUNCH_LINE_RE = re.compile(r"^(\S+)\s+([\d-]+\s[\d:]+)\s+(\d+)\s+(\d+)\s+(\d+)")

# Lines inside OPERLOG/ERRORLOG uploads that are real-time biometric or user records
REALTIME_BIOMETRIC_PREFIXES = ("FP", "FACE", "USER")

PLACEHOLDER_PREFIX = "AAAAA"

_TYPE_BY_TAG = {
    "FACE": TemplateType.FACE,
    "FP": TemplateType.FINGERPRINT,
}

_TYPE_BY_TABLE = {
    "FACE": TemplateType.FACE,
    "facev7": TemplateType.FACE,
    "USERVF": TemplateType.FACE,
    "FINGERTMP": TemplateType.FINGERPRINT,
    "templatev10": TemplateType.FINGERPRINT,
}

_IDENTITY_KEYS = ("Name", "Pri", "Card", "Passwd")


def _split_punch_fields(line: str) -> List[str]:
    parts = [part.strip() for part in line.split("\t")]
    if len(parts) >= 2:
        return parts

    match = PUNCH_LINE_RE.match(line)
    if match:
        return list(match.groups())

    parts = line.split()
    if len(parts) >= 3 and ":" in parts[2]:
        # date and time landed in separate tokens
        return [parts[0], f"{parts[1]} {parts[2]}"] + parts[3:]
    return parts


def _decode_punch(line: str) -> PunchRecord:
    parts = _split_punch_fields(line.strip())
    if len(parts) < 2 or not parts[0]:
        raise RecordParseError(line, "expected at least employee code and punch time")

    try:
        punch_time = parse_wire_timestamp(parts[1])
    except ValueError as e:
        raise RecordParseError(line, str(e)) from e

    def field(index: int) -> str:
        return parts[index] if len(parts) > index and parts[index] else "0"

    return PunchRecord(
        employee_code=parts[0],
        punch_time=punch_time,
        state=field(2),
        verify_mode=field(3),
        work_code=field(4),
        raw=line,
    )


def parse_punch_line(line: str) -> Record:
    """Decode one ATTLOG line: ``id \\t date time \\t state \\t verify \\t workcode``"""
    try:
        return _decode_punch(line)
    except RecordParseError as e:
        return ParseError(raw=line, reason=e.reason)


def _decode_log(line: str, family: RecordFamily):
    parts = line.split()
    if len(parts) < 5:
        raise RecordParseError(line, "expected tag, code, operator, date and time")

    tag, code, operator = parts[0], parts[1], parts[2]
    try:
        log_time = to_db(parse_wire_timestamp(f"{parts[3]} {parts[4]}"))
    except ValueError as e:
        raise RecordParseError(line, str(e)) from e
    details = " ".join(parts[5:])

    if family is RecordFamily.ERROR_LOG:
        return ErrorLogRecord(tag=tag, error_code=code, operator=operator,
                              log_time=log_time, details=details, raw=line)
    return OperationLogRecord(tag=tag, operation_type=code, operator=operator,
                              log_time=log_time, details=details, raw=line)


def parse_log_line(line: str, family: RecordFamily) -> Record:
    """Decode an OPERLOG/ERRORLOG line: tag, code, operator, date, time, details..."""
    try:
        return _decode_log(line, family)
    except RecordParseError as e:
        return ParseError(raw=line, reason=e.reason)


def infer_template_type(fields: KeyValueLine, table: Optional[str]) -> Optional[int]:
    """Explicit Type field first, then the line tag, then the upload table"""
    explicit = fields.first("Type")
    if explicit is not None:
        try:
            return int(explicit)
        except ValueError:
            return None
    if fields.leading_tag in _TYPE_BY_TAG:
        return _TYPE_BY_TAG[fields.leading_tag]
    return _TYPE_BY_TABLE.get(table or "")


def _optional_int(fields: KeyValueLine, key: str) -> Optional[int]:
    if fields.first(key) is None:
        return None
    return fields.int_of(key)


def _identity(fields: KeyValueLine, pin: str, line: str) -> IdentityRecord:
    return IdentityRecord(
        employee_code=pin,
        name=fields.first("Name"),
        privilege=_optional_int(fields, "Pri"),
        card_number=fields.first("Card"),
        password=fields.first("Passwd"),
        raw=line,
    )


def _decode_biometric(line: str, table: Optional[str]):
    fields = tokenize_key_values(line)
    pin = fields.first("PIN")
    if not pin:
        raise RecordParseError(line, "no PIN")

    if fields.leading_tag == "USER":
        return _identity(fields, pin, line)

    payload = normalize_payload(fields.first("Tmp", "Temp", "v", "Data"))
    if not payload:
        if any(key in fields for key in _IDENTITY_KEYS):
            return _identity(fields, pin, line)
        raise RecordParseError(line, "no template payload")

    template_type = infer_template_type(fields, table)
    if template_type is None:
        raise RecordParseError(line, "unknown biometric type")

    if payload.startswith(PLACEHOLDER_PREFIX):
        raise RecordParseError(line, "placeholder template payload")
    if len(payload) < settings.MIN_TEMPLATE_LENGTH:
        raise RecordParseError(line, f"template payload too short ({len(payload)} chars)")

    return TemplateRecord(
        employee_code=pin,
        template_type=template_type,
        template_no=fields.int_of("No", "FID", "Index", "FaceID"),
        payload=payload,
        valid=fields.int_of("Valid", default=1),
        duress=fields.int_of("Duress"),
        major_ver=fields.int_of("MajorVer"),
        minor_ver=fields.int_of("MinorVer"),
        format=fields.int_of("Format"),
        index_no=fields.int_of("Index"),
        raw=line,
    )


def parse_biometric_line(line: str, table: Optional[str] = None) -> Record:
    """Decode a Key=Value biometric or user line into a template or identity record"""
    try:
        return _decode_biometric(line, table)
    except RecordParseError as e:
        return ParseError(raw=line[:200], reason=e.reason)


def parse_upload(table: Optional[str], body: str) -> List[Record]:
    """Decode every non-blank line of an upload body according to its table"""
    family = RecordFamily.from_table(table)
    records: List[Record] = []

    for line in (body or "").split("\n"):
        line = line.rstrip("\r")
        if not line.strip():
            continue

        if family is RecordFamily.ATTENDANCE:
            records.append(parse_punch_line(line))
        elif family in (RecordFamily.OPERATION_LOG, RecordFamily.ERROR_LOG):
            if line.startswith(REALTIME_BIOMETRIC_PREFIXES):
                records.append(parse_biometric_line(line, table))
            else:
                records.append(parse_log_line(line, family))
        elif family is RecordFamily.BIOMETRIC:
            records.append(parse_biometric_line(line, table))
        else:
            records.append(UnknownRecord(table=table, raw=line))

    return records
