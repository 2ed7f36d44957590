"""
Push Protocol Service for ADMS terminals

Terminals never accept inbound connections; every exchange is a request
the terminal starts:

1. GET  /iclock/cdata        handshake, answered with the option block
2. POST /iclock/cdata        upload of ATTLOG / OPERLOG / ERRORLOG / biometric tables
3. GET  /iclock/getrequest   poll for the next queued command
4. POST /iclock/devicecmd    result of a previously delivered command

Upload and result paths always answer "OK"; failures stay server-side.
"""

from datetime import datetime
from typing import Dict, List, Optional, Tuple
from urllib.parse import parse_qsl

from adms_server.config import settings
from adms_server.events.event_stream import device_event_stream
from adms_server.events.template_events import TemplateChanged, template_events
from adms_server.models.attendance import AttendancePunch, PunchState
from adms_server.models.biometric import BiometricTemplate, TemplateType
from adms_server.models.device import Device, PunchDirection
from adms_server.protocol import (
    ErrorLogRecord,
    IdentityRecord,
    OperationLogRecord,
    ParseError,
    PunchRecord,
    TemplateRecord,
    UnknownRecord,
    parse_upload,
)
from adms_server.repositories import attendance_repo, device_log_repo, employee_repo, template_repo
from adms_server.services.attendance_summarizer import attendance_summarizer
from adms_server.services.capability_detector import capability_detector, parse_descriptor
from adms_server.services.command_queue import command_queue
from adms_server.services.device_registry import device_registry
from adms_server.services.template_sync import template_sync  # noqa: F401  subscribes to template events
from adms_server.shared.exceptions import CommandNotFoundError
from adms_server.shared.logger import get_logger

OK = "OK"
NO_SERIAL_MESSAGE = (
    "ADMS Server Ready\n"
    "This endpoint is for biometric device communication.\n"
    "Provide SN (serial number) parameter."
)


def handshake_options() -> str:
    """Option block sent to a terminal on handshake; the layout is fixed by the firmware"""
    return "\n".join([
        "GET OPTION FROM:attlog",
        "Stamp=0",
        "OpStamp=0",
        f"ErrorDelay={settings.ERROR_DELAY}",
        f"Delay={settings.HEARTBEAT_DELAY}",
        f"TransTimes={settings.TRANS_TIMES}",
        f"TransInterval={settings.TRANS_INTERVAL}",
        "TransFlag=1111000000",
        f"Realtime={settings.REALTIME}",
        "Encrypt=0",
    ])


def apply_direction(state: str, direction: str) -> str:
    if direction == PunchDirection.IN:
        return PunchState.CHECK_IN
    if direction == PunchDirection.OUT:
        return PunchState.CHECK_OUT
    return state


def parse_result_reports(body: str) -> List[Dict[str, str]]:
    """Split a devicecmd body into reports; ``&`` and newlines both separate fields"""
    reports: List[Dict[str, str]] = []
    current: Dict[str, str] = {}
    for line in (body or "").replace("\r", "").split("\n"):
        for key, value in parse_qsl(line.strip(), keep_blank_values=True):
            key = key.strip().upper()
            if key == "ID" and "ID" in current:
                reports.append(current)
                current = {}
            current[key] = value.strip()
    if current:
        reports.append(current)
    return reports


class PushProtocolService:
    """
    Handles the four ADMS exchanges.

    Records decoded from uploads are persisted here; template changes are
    announced through ``template_events`` once the row is committed.
    """

    def __init__(self, logger=None):
        self.logger = logger or get_logger("adms")
        self._record_handlers = {
            PunchRecord: self._save_punch,
            TemplateRecord: self._save_template,
            IdentityRecord: self._save_identity,
            OperationLogRecord: self._save_operation_log,
            ErrorLogRecord: self._save_error_log,
            UnknownRecord: self._flag_unknown,
            ParseError: self._skip_malformed,
        }

    # ========================================================================
    # HANDSHAKE & POLL
    # ========================================================================

    def handle_handshake(
        self,
        serial_number: Optional[str],
        ip_address: Optional[str] = None,
        push_version: Optional[str] = None,
        info: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        if not serial_number:
            return NO_SERIAL_MESSAGE

        self.logger.info(f"[ADMS] Handshake: SN={serial_number} ip={ip_address}")
        device_registry.touch(
            serial_number,
            ip_address=ip_address,
            push_version=push_version,
            notify=True,
            now=now,
        )
        capability_detector.detect(serial_number, info, now)
        return handshake_options()

    def handle_poll(
        self,
        serial_number: Optional[str],
        info: Optional[str] = None,
        ip_address: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """Refresh liveness and capabilities, then hand out at most one command"""
        if not serial_number:
            return OK

        parsed = parse_descriptor(info)
        device_registry.touch(
            serial_number,
            ip_address=(parsed.ip_address if parsed and parsed.ip_address else ip_address),
            device_model=parsed.device_model if parsed else None,
            firmware_version=parsed.firmware_version if parsed else None,
            now=now,
        )
        capability_detector.detect(serial_number, info, now)

        command = command_queue.dequeue(serial_number, now)
        if command is None:
            return OK
        return command.to_wire()

    # ========================================================================
    # UPLOADS
    # ========================================================================

    def handle_upload(
        self,
        serial_number: Optional[str],
        table: Optional[str],
        body: str,
        ip_address: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[str, Dict[str, int]]:
        """Persist every record of an upload body; returns the wire answer and per-kind counts"""
        counts: Dict[str, int] = {}
        if not serial_number:
            self.logger.warning(f"[ADMS] Upload for table={table} without SN ignored")
            return OK, counts

        device = device_registry.touch(serial_number, ip_address=ip_address, now=now)
        records = parse_upload(table, body)
        self.logger.info(f"[ADMS] Upload from {serial_number}: table={table or 'ATTLOG'} lines={len(records)}")

        for record in records:
            kind = type(record).__name__
            try:
                self._record_handlers[type(record)](device, record, table)
                counts[kind] = counts.get(kind, 0) + 1
            except Exception as e:
                self.logger.error(f"[ADMS] Failed to store {kind} from {serial_number}: {e}", exc_info=True)
                counts["failed"] = counts.get("failed", 0) + 1

        return OK, counts

    def _save_punch(self, device: Device, record: PunchRecord, table: Optional[str]) -> None:
        employee_repo.ensure_exists(record.employee_code)
        punch, created = attendance_repo.upsert(AttendancePunch(
            employee_code=record.employee_code,
            punch_time=record.punch_time,
            device_serial=device.serial_number,
            punch_state=apply_direction(record.state, device.punch_direction),
            verification_mode=record.verify_mode,
            work_code=record.work_code,
            raw_data=record.raw,
            upload_time=datetime.now(),
        ))

        device_event_stream.publish("attendance", {
            "employee_code": punch.employee_code,
            "device_serial": device.serial_number,
            "punch_time": punch.punch_time,
            "punch_state": punch.punch_state,
            "new": created,
        })

        attendance_summarizer.recompute(punch.employee_code, punch.punch_time.date())

    def _save_template(self, device: Device, record: TemplateRecord, table: Optional[str]) -> None:
        employee_repo.ensure_exists(record.employee_code)
        stored, changed = template_repo.upsert(BiometricTemplate(
            employee_code=record.employee_code,
            template_type=record.template_type,
            template_no=record.template_no,
            template_data=record.payload,
            valid=record.valid,
            duress=record.duress,
            source_device=device.serial_number,
            major_ver=record.major_ver,
            minor_ver=record.minor_ver,
            format=record.format,
            index_no=record.index_no,
        ))

        employee_repo.set_biometric_flag(
            record.employee_code,
            fingerprint=record.template_type in TemplateType.FINGERPRINT_TYPES,
            face=record.template_type == TemplateType.FACE,
        )

        if record.template_type == TemplateType.FACE:
            capability_detector.update_face_version(
                device.serial_number, record.major_ver, record.minor_ver, record.format
            )

        self.logger.info(
            f"[ADMS] Template PIN={record.employee_code} type={record.template_type} "
            f"no={record.template_no} from {device.serial_number} (changed={changed})"
        )

        force = settings.FACE_ALWAYS_RESYNC and stored.is_face
        if changed or force:
            template_events.publish(TemplateChanged(
                employee_code=stored.employee_code,
                template_type=stored.template_type,
                template_no=stored.template_no,
                source_device=device.serial_number,
            ))

    def _save_identity(self, device: Device, record: IdentityRecord, table: Optional[str]) -> None:
        employee_repo.update_identity(
            record.employee_code,
            name=record.name,
            privilege=record.privilege,
            card_number=record.card_number,
            password=record.password,
        )
        self.logger.debug(f"[ADMS] User record PIN={record.employee_code} from {device.serial_number}")

    def _save_operation_log(self, device: Device, record: OperationLogRecord, table: Optional[str]) -> None:
        device_log_repo.add_operation(
            device.serial_number, record.operation_type, record.operator, record.log_time, record.details
        )

    def _save_error_log(self, device: Device, record: ErrorLogRecord, table: Optional[str]) -> None:
        device_log_repo.add_error(
            device.serial_number, record.error_code, record.operator, record.log_time, record.details
        )

    def _flag_unknown(self, device: Device, record: UnknownRecord, table: Optional[str]) -> None:
        self.logger.warning(
            f"[ADMS] Unrecognised table '{record.table}' from {device.serial_number}: {record.raw[:100]}"
        )

    def _skip_malformed(self, device: Device, record: ParseError, table: Optional[str]) -> None:
        self.logger.warning(
            f"[ADMS] Skipped {table or 'ATTLOG'} line from {device.serial_number}: "
            f"{record.reason} ({record.raw[:100]!r})"
        )

    # ========================================================================
    # COMMAND RESULTS
    # ========================================================================

    def handle_command_result(
        self,
        serial_number: Optional[str],
        body: str,
        query_id: Optional[str] = None,
        query_return: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        if serial_number:
            device_registry.touch(serial_number, now=now)

        reports = parse_result_reports(body)
        if not reports and query_id is not None:
            reports = [{"ID": query_id, "RETURN": query_return or ""}]

        for report in reports:
            try:
                command_id = int(report.get("ID", ""))
                return_code = int(report.get("RETURN", ""))
            except ValueError:
                self.logger.warning(f"[ADMS] Unreadable command result from {serial_number}: {report}")
                continue

            try:
                command_queue.acknowledge(command_id, return_code, device_serial=serial_number, now=now)
            except CommandNotFoundError as e:
                self.logger.warning(f"[ADMS] Result from {serial_number} for unknown command: {e}")

        return OK


push_protocol_service = PushProtocolService()
