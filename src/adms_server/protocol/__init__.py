from adms_server.protocol.records import (
    ErrorLogRecord,
    IdentityRecord,
    OperationLogRecord,
    ParseError,
    PunchRecord,
    RecordFamily,
    TemplateRecord,
    UnknownRecord,
)
from adms_server.protocol.parsers import (
    parse_biometric_line,
    parse_log_line,
    parse_punch_line,
    parse_upload,
)
from adms_server.protocol.tokenizer import KeyValueLine, tokenize_key_values

__all__ = [
    "ErrorLogRecord",
    "IdentityRecord",
    "OperationLogRecord",
    "ParseError",
    "PunchRecord",
    "RecordFamily",
    "TemplateRecord",
    "UnknownRecord",
    "parse_biometric_line",
    "parse_log_line",
    "parse_punch_line",
    "parse_upload",
    "KeyValueLine",
    "tokenize_key_values",
]
