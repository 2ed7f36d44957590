from datetime import datetime, timedelta
from typing import List, Optional

from adms_server.config import settings
from adms_server.events.event_stream import device_event_stream
from adms_server.models.device import Device, DeviceStatus, PunchDirection
from adms_server.repositories import device_repo
from adms_server.shared.logger import get_logger


class DeviceRegistry:
    """Tracks terminal identity and liveness by serial number"""

    def __init__(self, logger=None, event_stream=None):
        self.logger = logger or get_logger("registry")
        self.event_stream = event_stream or device_event_stream

    def touch(
        self,
        serial_number: str,
        ip_address: Optional[str] = None,
        device_model: Optional[str] = None,
        firmware_version: Optional[str] = None,
        push_version: Optional[str] = None,
        notify: bool = False,
        now: Optional[datetime] = None,
    ) -> Device:
        """Mark a device online and stamp its activity, creating it on first contact.

        A status event is published when the device was unknown or offline,
        or always when ``notify`` is set.
        """
        previous = device_repo.get_by_serial(serial_number)
        device = device_repo.touch(
            serial_number,
            ip_address=ip_address,
            device_model=device_model,
            firmware_version=firmware_version,
            push_version=push_version,
            now=now,
        )

        came_online = previous is None or previous.status != DeviceStatus.ONLINE
        if previous is None:
            self.logger.info(f"[ADMS] New device registered: {serial_number} ({ip_address or 'unknown ip'})")
        elif came_online:
            self.logger.info(f"[ADMS] Device {serial_number} is back online")

        if came_online or notify:
            self._publish_status(device)
        return device

    def get(self, serial_number: str) -> Optional[Device]:
        return device_repo.get_by_serial(serial_number)

    def list_devices(self) -> List[Device]:
        return device_repo.get_all()

    def set_direction(self, serial_number: str, direction: str) -> Device:
        """Force punches from a device to check-in ('in'), check-out ('out') or leave them ('both')"""
        direction = (direction or "").strip().lower()
        if direction not in PunchDirection.ALL:
            raise ValueError(f"punch direction must be one of {', '.join(PunchDirection.ALL)}")
        if not device_repo.update(serial_number, {"punch_direction": direction}):
            raise LookupError(f"Device {serial_number} not found")
        self.logger.info(f"[ADMS] Punch direction for {serial_number} set to '{direction}'")
        return device_repo.get_by_serial(serial_number)

    def sweep_offline(self, now: Optional[datetime] = None) -> List[str]:
        """Mark devices silent for longer than the offline threshold as offline"""
        now = now or datetime.now()
        cutoff = now - timedelta(minutes=settings.OFFLINE_AFTER_MINUTES)
        serials = device_repo.mark_stale_offline(cutoff, now)
        for serial in serials:
            self.logger.warning(
                f"[ADMS] Device {serial} marked offline (no activity for {settings.OFFLINE_AFTER_MINUTES} min)"
            )
            self.event_stream.publish("device_status", {
                "serial_number": serial,
                "status": DeviceStatus.OFFLINE,
            })
        return serials

    def _publish_status(self, device: Device) -> None:
        self.event_stream.publish("device_status", {
            "serial_number": device.serial_number,
            "status": device.status,
            "ip_address": device.ip_address,
            "last_activity": device.last_activity,
        })


device_registry = DeviceRegistry()
