from datetime import datetime

from adms_server.models.biometric import TemplateType
from adms_server.protocol import (
    ErrorLogRecord,
    IdentityRecord,
    OperationLogRecord,
    ParseError,
    PunchRecord,
    RecordFamily,
    TemplateRecord,
    UnknownRecord,
    parse_biometric_line,
    parse_punch_line,
    parse_upload,
    tokenize_key_values,
)


class TestTokenizer:
    def test_tab_separated_line_strips_table_prefix(self):
        fields = tokenize_key_values("BIODATA Pin=E1\tNo=0\tType=9\tTmp=abc")

        assert fields["PIN"] == "E1"
        assert fields["pin"] == "E1"
        assert fields["Type"] == "9"
        assert fields.leading_tag == "BIODATA"

    def test_whitespace_line_keeps_multi_word_values(self):
        fields = tokenize_key_values("USER PIN=7 Name=John Doe Pri=14")

        assert fields.leading_tag == "USER"
        assert fields["Name"] == "John Doe"
        assert fields["Pri"] == "14"

    def test_value_may_contain_equals_padding(self):
        fields = tokenize_key_values("PIN=1\tTmp=QUJD==")

        assert fields["tmp"] == "QUJD=="

    def test_first_and_int_helpers(self):
        fields = tokenize_key_values("PIN=1\tFID=3\tValid=x")

        assert fields.first("No", "FID") == "3"
        assert fields.int_of("No", "FID") == 3
        assert fields.int_of("Valid", default=1) == 1
        assert fields.int_of("Missing", default=7) == 7


class TestPunchParsing:
    def test_tab_separated_punch(self):
        record = parse_punch_line("E001\t2024-01-10 09:15:00\t0\t1\t0")

        assert isinstance(record, PunchRecord)
        assert record.employee_code == "E001"
        assert record.punch_time == datetime(2024, 1, 10, 9, 15)
        assert (record.state, record.verify_mode, record.work_code) == ("0", "1", "0")

    def test_space_separated_punch_uses_pattern(self):
        record = parse_punch_line("E001 2024-01-10 09:15:00 1 15 0")

        assert isinstance(record, PunchRecord)
        assert record.punch_time == datetime(2024, 1, 10, 9, 15)
        assert record.state == "1"
        assert record.verify_mode == "15"

    def test_short_space_separated_punch_defaults_trailing_fields(self):
        record = parse_punch_line("E001 2024-01-10 09:15:00")

        assert isinstance(record, PunchRecord)
        assert record.state == "0"

    def test_slash_dates_are_accepted(self):
        record = parse_punch_line("E001\t2024/01/10 09:15:00\t0\t1\t0")

        assert isinstance(record, PunchRecord)
        assert record.punch_time == datetime(2024, 1, 10, 9, 15)

    def test_bad_timestamp_is_a_parse_error(self):
        record = parse_punch_line("E001\tyesterday\t0\t1\t0")

        assert isinstance(record, ParseError)
        assert "timestamp" in record.reason

    def test_single_token_is_a_parse_error(self):
        assert isinstance(parse_punch_line("garbage"), ParseError)


class TestBiometricParsing:
    def test_face_biodata_line(self, template_payload):
        payload = template_payload(500)
        line = (
            f"BIODATA Pin=E002\tNo=0\tIndex=0\tValid=1\tDuress=0\tType=9\t"
            f"MajorVer=40\tMinorVer=1\tFormat=0\tTmp={payload}"
        )

        record = parse_biometric_line(line, "BIODATA")

        assert isinstance(record, TemplateRecord)
        assert record.employee_code == "E002"
        assert record.template_type == TemplateType.FACE
        assert record.payload == payload
        assert (record.major_ver, record.minor_ver) == (40, 1)

    def test_type_inferred_from_table(self, template_payload):
        record = parse_biometric_line(f"PIN=E3\tFID=2\tValid=1\tTMP={template_payload()}", "FINGERTMP")

        assert isinstance(record, TemplateRecord)
        assert record.template_type == TemplateType.FINGERPRINT
        assert record.template_no == 2

    def test_type_inferred_from_line_tag(self, template_payload):
        record = parse_biometric_line(f"FACE PIN=E4\tFID=0\tTMP={template_payload()}", "OPERLOG")

        assert isinstance(record, TemplateRecord)
        assert record.template_type == TemplateType.FACE

    def test_short_payload_rejected(self):
        record = parse_biometric_line("PIN=E3\tFID=0\tTMP=abc", "FINGERTMP")

        assert isinstance(record, ParseError)
        assert "too short" in record.reason

    def test_placeholder_payload_rejected(self):
        record = parse_biometric_line("PIN=E3\tFID=0\tTMP=" + "A" * 300, "FINGERTMP")

        assert isinstance(record, ParseError)
        assert "placeholder" in record.reason

    def test_missing_pin_rejected(self, template_payload):
        assert isinstance(parse_biometric_line(f"FID=0\tTMP={template_payload()}", "FINGERTMP"), ParseError)

    def test_unknown_type_rejected(self, template_payload):
        record = parse_biometric_line(f"Pin=E3\tNo=0\tTmp={template_payload()}", "BIODATA")

        assert isinstance(record, ParseError)

    def test_user_line_is_identity(self):
        record = parse_biometric_line("USER PIN=E5\tName=Alice Smith\tPri=14\tCard=123\tPasswd=", "OPERLOG")

        assert isinstance(record, IdentityRecord)
        assert record.name == "Alice Smith"
        assert record.privilege == 14
        assert record.card_number == "123"
        assert record.password is None


class TestUploadDispatch:
    def test_record_family_from_table(self):
        assert RecordFamily.from_table(None) is RecordFamily.ATTENDANCE
        assert RecordFamily.from_table("ATTLOG") is RecordFamily.ATTENDANCE
        assert RecordFamily.from_table("OPERLOG") is RecordFamily.OPERATION_LOG
        assert RecordFamily.from_table("facev7") is RecordFamily.BIOMETRIC
        assert RecordFamily.from_table("USERVF") is RecordFamily.BIOMETRIC
        assert RecordFamily.from_table("OPTIONS") is RecordFamily.UNKNOWN

    def test_blank_body_yields_nothing(self):
        assert parse_upload("ATTLOG", "\r\n\n  \n") == []
        assert parse_upload("ATTLOG", "") == []

    def test_operation_and_error_logs(self):
        oplog = parse_upload("OPERLOG", "OPLOG 4 0 2024-01-10 09:00:00 0 0 0 0")
        errlog = parse_upload("ERRORLOG", "OP_ERR_LOG 2 1 2024-01-10 09:01:00 extra")

        assert isinstance(oplog[0], OperationLogRecord)
        assert oplog[0].operation_type == "4"
        assert oplog[0].log_time == "2024-01-10 09:00:00"
        assert oplog[0].details == "0 0 0 0"
        assert isinstance(errlog[0], ErrorLogRecord)
        assert errlog[0].error_code == "2"

    def test_realtime_biometric_lines_inside_operlog(self, template_payload):
        body = "\n".join([
            "OPLOG 4 0 2024-01-10 09:00:00 0 0 0 0",
            f"FP PIN=5\tFID=1\tSize=375\tValid=1\tTMP={template_payload()}",
            "USER PIN=5\tName=Bob",
        ])

        records = parse_upload("OPERLOG", body)

        assert [type(r) for r in records] == [OperationLogRecord, TemplateRecord, IdentityRecord]
        assert records[1].template_type == TemplateType.FINGERPRINT

    def test_unknown_table_lines_are_flagged(self):
        records = parse_upload("WHATEVER", "a=1\nb=2")

        assert all(isinstance(r, UnknownRecord) for r in records)
        assert len(records) == 2
