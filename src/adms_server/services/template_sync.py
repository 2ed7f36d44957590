"""
Template Synchronization Engine

Propagates a changed biometric template from its origin terminal to every
other registered terminal. Per target device the plan is:

    sequence 1  DATA UPDATE USERINFO   (skipped if one was queued recently)
    sequence 2  DATA DELETE FACE       (face templates only)
    sequence 3  DATA UPDATE BIODATA | FINGERTMP

All steps share one priority so the sequence alone decides the order, and
the plan for all targets is enqueued as a single batch.
"""

from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Set

from adms_server.config import settings
from adms_server.events.template_events import TemplateChanged, template_events
from adms_server.models.biometric import BiometricTemplate
from adms_server.models.command import PlannedCommand, Priority
from adms_server.models.employee import Employee
from adms_server.repositories import command_repo, device_repo, employee_repo, template_repo
from adms_server.services.capability_detector import capability_detector
from adms_server.services.command_queue import command_queue
from adms_server.shared.logger import get_logger

SEQ_IDENTITY = 1
SEQ_DELETE = 2
SEQ_DATA = 3

SYNC_PRIORITY = Priority.HIGH


def template_size(payload: str) -> int:
    """Decoded byte size of a base64 payload"""
    return (len(payload) * 3) // 4 - payload.count("=")


def _clean(value) -> str:
    return str(value if value is not None else "").replace("\t", " ")


def identity_command(employee: Employee) -> str:
    return (
        f"DATA UPDATE USERINFO PIN={employee.employee_code}"
        f"\tName={_clean(employee.name or 'Unknown')}"
        f"\tPri={employee.privilege or 0}"
        f"\tPasswd={_clean(employee.password)}"
        f"\tCard={_clean(employee.card_number)}"
        "\tGrp=1\tTZ=1\tVerify=0\tFace=1\tFPCount=1"
    )


def face_delete_command(employee_code: str) -> str:
    return f"DATA DELETE FACE PIN={employee_code}"


class TemplateSyncEngine:
    """Builds and enqueues per-device sync plans for changed templates"""

    def __init__(self, logger=None, queue=None, detector=None):
        self.logger = logger or get_logger("sync")
        self.queue = queue or command_queue
        self.detector = detector or capability_detector

    def handle(self, event: TemplateChanged) -> List[int]:
        """TemplateChanged subscriber"""
        return self.fan_out(
            event.employee_code,
            event.template_type,
            event.template_no,
            source_device=event.source_device,
        )

    def fan_out(
        self,
        employee_code: str,
        template_type: int,
        template_no: int,
        source_device: Optional[str],
        targets: Optional[Iterable[str]] = None,
        now: Optional[datetime] = None,
    ) -> List[int]:
        """Enqueue the sync plan of one stored template to every device but its origin"""
        template = template_repo.get(employee_code, template_type, template_no)
        if template is None or len(template.normalized_data) < settings.MIN_TEMPLATE_LENGTH:
            self.logger.warning(
                f"[SYNC] No valid stored template for PIN={employee_code} "
                f"type={template_type} no={template_no}; nothing to sync"
            )
            return []

        target_list = list(targets) if targets is not None else device_repo.get_serials_except(source_device)
        target_list = [serial for serial in target_list if serial != source_device]
        if not target_list:
            return []

        now = now or datetime.now()
        employee = employee_repo.get(employee_code) or Employee(employee_code=employee_code)
        planned = self.plan([template], employee, target_list, now)
        ids = self.queue.enqueue_batch(planned, now=now)

        self.logger.info(
            f"[SYNC] PIN={employee_code} type={template_type} no={template_no} from "
            f"{source_device or 'server'} -> {len(target_list)} device(s), {len(ids)} command(s)"
        )
        return ids

    def plan(
        self,
        templates: List[BiometricTemplate],
        employee: Employee,
        targets: List[str],
        now: datetime,
    ) -> List[PlannedCommand]:
        """Commands that bring each target up to date with the given templates"""
        since = now - timedelta(seconds=settings.USERINFO_DEDUP_SECONDS)
        planned: List[PlannedCommand] = []
        deleted_face: Set[str] = set()

        for target in targets:
            if not command_repo.has_recent_identity(target, employee.employee_code, since):
                planned.append(self._step(target, identity_command(employee), SEQ_IDENTITY))

            for template in templates:
                if template.is_face and target not in deleted_face:
                    planned.append(self._step(target, face_delete_command(employee.employee_code), SEQ_DELETE))
                    deleted_face.add(target)
                planned.append(self._step(target, self.data_command(template, target), SEQ_DATA))

        return planned

    def data_command(self, template: BiometricTemplate, target: str) -> str:
        payload = template.normalized_data
        sync_format = self.detector.get_sync_format(
            target,
            template.template_type,
            fallback_major=template.major_ver,
            fallback_minor=template.minor_ver,
        )

        if sync_format.verb == "BIODATA":
            return (
                f"DATA UPDATE BIODATA Pin={template.employee_code}"
                f"\tNo={template.template_no}"
                f"\tIndex={template.index_no}"
                f"\tValid={template.valid}"
                f"\tDuress={template.duress}"
                f"\tType={template.template_type}"
                f"\tMajorVer={sync_format.major_ver}"
                f"\tMinorVer={sync_format.minor_ver}"
                f"\tFormat={template.format}"
                f"\tTmp={payload}"
            )

        return (
            f"DATA UPDATE FINGERTMP PIN={template.employee_code}"
            f"\tFID={template.template_no}"
            f"\tSize={template_size(payload)}"
            f"\tValid={template.valid}"
            f"\tTMP={payload}"
        )

    def resync_employee(self, employee_code: str, target: Optional[str] = None, now: Optional[datetime] = None) -> List[int]:
        """Push every stored template of an employee to one device, or to all devices"""
        templates = [
            t for t in template_repo.get_by_employee(employee_code)
            if len(t.normalized_data) >= settings.MIN_TEMPLATE_LENGTH
        ]
        if not templates:
            return []

        targets = [target] if target else [d.serial_number for d in device_repo.get_all()]
        employee = employee_repo.get(employee_code) or Employee(employee_code=employee_code)
        now = now or datetime.now()
        ids = self.queue.enqueue_batch(self.plan(templates, employee, targets, now), now=now)
        self.logger.info(
            f"[SYNC] Manual resync of PIN={employee_code}: {len(templates)} template(s) "
            f"to {len(targets)} device(s), {len(ids)} command(s)"
        )
        return ids

    @staticmethod
    def _step(target: str, command: str, sequence: int) -> PlannedCommand:
        return PlannedCommand(
            device_serial=target,
            command=command,
            priority=SYNC_PRIORITY,
            sequence=sequence,
        )


template_sync = TemplateSyncEngine()
template_events.subscribe(template_sync.handle)
