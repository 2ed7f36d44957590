"""
Capability Detector

Parses the comma-separated INFO descriptor terminals send on each poll, e.g.

    ZAM70-NF24HA-Ver3.3.12,1,1,0,10.81.20.170,10,40,12,1,11010,0,0,0

    [0] model-Ver<firmware>   [1..3] face/finger/palm flags   [4] device IP
    [6] face algorithm major version

Minor version and format are only trusted when seen in uploaded templates
(see ``update_face_version``). Known versions are never downgraded to zero.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from adms_server.config import settings
from adms_server.models.biometric import TemplateType
from adms_server.models.command import Priority
from adms_server.models.device import DeviceCapabilities
from adms_server.repositories import capability_repo
from adms_server.services.command_queue import command_queue
from adms_server.shared.logger import get_logger

VERSION_MARKER_RE = re.compile(r"-ver", re.IGNORECASE)
FIRMWARE_RE = re.compile(r"-[Vv]er([\d.]+)")

FACE_MAJOR_RANGE = (30, 100)

PROBE_COMMANDS = (
    "DATA QUERY BIODATA",
    "DATA QUERY FACE",
    "DATA QUERY FINGERTMP",
)


@dataclass(frozen=True)
class ParsedCapabilities:
    raw: str
    device_model: Optional[str]
    firmware_version: Optional[str]
    face_supported: bool
    finger_supported: bool
    palm_supported: bool
    ip_address: Optional[str]
    face_major_ver: int  # 0 when absent or implausible


@dataclass(frozen=True)
class SyncFormat:
    """How a template should be addressed to one target device"""
    verb: str
    major_ver: int
    minor_ver: int


def _split_model(field: str):
    field = field.strip()
    marker = VERSION_MARKER_RE.search(field)
    if not marker or marker.start() == 0:
        return (field or None), None
    model = field[:marker.start()] or None
    firmware_match = FIRMWARE_RE.search(field)
    if firmware_match:
        firmware = firmware_match.group(1)
    else:
        firmware = field[marker.end():].strip() or None
    return model, firmware


def parse_descriptor(info: Optional[str]) -> Optional[ParsedCapabilities]:
    """Parse an INFO descriptor; None when there is nothing to parse"""
    if not info or not info.strip():
        return None

    parts = [part.strip() for part in info.split(",")]

    def flag(index: int) -> bool:
        return len(parts) > index and parts[index] == "1"

    model, firmware = _split_model(parts[0])

    major = 0
    if len(parts) > 6:
        try:
            candidate = int(parts[6])
        except ValueError:
            candidate = 0
        low, high = FACE_MAJOR_RANGE
        if low <= candidate <= high:
            major = candidate

    return ParsedCapabilities(
        raw=info,
        device_model=model,
        firmware_version=firmware,
        face_supported=flag(1),
        finger_supported=flag(2),
        palm_supported=flag(3),
        ip_address=(parts[4] or None) if len(parts) > 4 else None,
        face_major_ver=major,
    )


class CapabilityDetector:
    """Keeps device_capabilities current from descriptors and template uploads"""

    def __init__(self, logger=None):
        self.logger = logger or get_logger("capabilities")

    def detect(self, serial_number: str, info: Optional[str], now: Optional[datetime] = None) -> Optional[DeviceCapabilities]:
        """Merge a descriptor into the device's profile.

        Without a descriptor a default profile is seeded for unknown devices;
        an existing profile is left untouched.
        """
        parsed = parse_descriptor(info)
        if parsed is None:
            if capability_repo.insert_if_missing(self.default_profile(serial_number), now):
                self.logger.info(f"[ADMS] Seeded default capabilities for {serial_number}")
            return capability_repo.get(serial_number)

        caps = DeviceCapabilities(
            device_serial=serial_number,
            device_model=parsed.device_model,
            firmware_version=parsed.firmware_version,
            face_supported=parsed.face_supported,
            finger_supported=parsed.finger_supported,
            palm_supported=parsed.palm_supported,
            card_supported=True,
            face_major_ver=parsed.face_major_ver,
            raw_info=parsed.raw,
        )
        return capability_repo.merge(caps, now)

    def default_profile(self, serial_number: str) -> DeviceCapabilities:
        return DeviceCapabilities(
            device_serial=serial_number,
            face_supported=True,
            finger_supported=True,
            card_supported=True,
            face_major_ver=settings.DEFAULT_FACE_MAJOR_VER,
            face_minor_ver=settings.DEFAULT_FACE_MINOR_VER,
        )

    def update_face_version(self, serial_number: str, major: int, minor: int, fmt: int) -> None:
        """Record versions observed in an uploaded face template"""
        if not (major or minor or fmt):
            return
        capability_repo.merge_face_version(serial_number, major, minor, fmt)
        self.logger.info(
            f"[ADMS] Face algorithm for {serial_number}: MajorVer={major} MinorVer={minor} Format={fmt}"
        )

    def get(self, serial_number: str) -> Optional[DeviceCapabilities]:
        return capability_repo.get(serial_number)

    def get_all(self) -> List[DeviceCapabilities]:
        return capability_repo.get_all()

    def get_sync_format(
        self,
        serial_number: str,
        template_type: int,
        fallback_major: int = 0,
        fallback_minor: int = 0,
    ) -> SyncFormat:
        """Command verb and face versions to use when writing to ``serial_number``.

        Versions come from the target's profile, then the given fallbacks,
        then the configured defaults.
        """
        if template_type in TemplateType.FINGERPRINT_TYPES:
            return SyncFormat(verb="FINGERTMP", major_ver=0, minor_ver=0)

        caps = capability_repo.get(serial_number)
        major = (caps.face_major_ver if caps else 0) or fallback_major or settings.DEFAULT_FACE_MAJOR_VER
        minor = (caps.face_minor_ver if caps else 0) or fallback_minor or settings.DEFAULT_FACE_MINOR_VER
        return SyncFormat(verb="BIODATA", major_ver=major, minor_ver=minor)

    def probe(self, serial_number: str) -> List[int]:
        """Ask the terminal to report its templates so versions can be observed"""
        commands = [
            command_queue.enqueue(serial_number, command, priority=Priority.LOW)
            for command in PROBE_COMMANDS
        ]
        self.logger.info(f"[ADMS] Queued capability probe for {serial_number}")
        return [command.id for command in commands]


capability_detector = CapabilityDetector()
