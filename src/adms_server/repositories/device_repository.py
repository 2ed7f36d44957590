from typing import Any, Dict, List, Optional
from adms_server.models.device import Device, DeviceStatus
from adms_server.database.connection import db_manager
from adms_server.utils.timefmt import from_db, now_db


class DeviceRepository:
    """Device database operations"""

    def touch(
        self,
        serial_number: str,
        ip_address: str = None,
        device_model: str = None,
        firmware_version: str = None,
        push_version: str = None,
        now=None,
    ) -> Device:
        """Create or refresh a device: mark online and stamp last activity.

        Optional attributes only overwrite stored values when provided.
        """
        timestamp = now_db(now)
        query = '''
            INSERT INTO devices (
                serial_number, status, last_activity, ip_address,
                device_model, firmware_version, push_version, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(serial_number) DO UPDATE SET
                status = excluded.status,
                last_activity = excluded.last_activity,
                ip_address = COALESCE(excluded.ip_address, devices.ip_address),
                device_model = COALESCE(excluded.device_model, devices.device_model),
                firmware_version = COALESCE(excluded.firmware_version, devices.firmware_version),
                push_version = COALESCE(excluded.push_version, devices.push_version),
                updated_at = excluded.updated_at
        '''
        db_manager.execute_query(query, (
            serial_number, DeviceStatus.ONLINE, timestamp, ip_address,
            device_model, firmware_version, push_version, timestamp, timestamp
        ))
        return self.get_by_serial(serial_number)

    def get_by_serial(self, serial_number: str) -> Optional[Device]:
        row = db_manager.fetch_one(
            "SELECT * FROM devices WHERE serial_number = ?", (serial_number,)
        )
        return self._row_to_device(row) if row else None

    def get_all(self) -> List[Device]:
        """Get all devices"""
        rows = db_manager.fetch_all("SELECT * FROM devices ORDER BY serial_number")
        return [self._row_to_device(row) for row in rows]

    def get_serials_except(self, serial_number: str) -> List[str]:
        """Serial numbers of every registered device other than the given one"""
        rows = db_manager.fetch_all(
            "SELECT serial_number FROM devices WHERE serial_number != ? ORDER BY serial_number",
            (serial_number or "",),
        )
        return [row['serial_number'] for row in rows]

    def update(self, serial_number: str, updates: Dict[str, Any]) -> bool:
        """Update device"""
        updates['updated_at'] = now_db()

        set_clause = ', '.join([f"{key} = ?" for key in updates.keys()])
        query = f"UPDATE devices SET {set_clause} WHERE serial_number = ?"

        cursor = db_manager.execute_query(query, (*updates.values(), serial_number))
        return cursor.rowcount > 0

    def mark_stale_offline(self, cutoff, now=None) -> List[str]:
        """Flip online devices silent since ``cutoff`` to offline; returns their serials"""
        cutoff_str = now_db(cutoff)
        with db_manager.transaction() as cursor:
            cursor.execute(
                "SELECT serial_number FROM devices WHERE status = ? AND last_activity < ?",
                (DeviceStatus.ONLINE, cutoff_str),
            )
            serials = [row['serial_number'] for row in cursor.fetchall()]
            for serial in serials:
                cursor.execute(
                    "UPDATE devices SET status = ?, updated_at = ? WHERE serial_number = ? AND status = ?",
                    (DeviceStatus.OFFLINE, now_db(now), serial, DeviceStatus.ONLINE),
                )
        return serials

    def _row_to_device(self, row) -> Device:
        return Device(
            serial_number=row['serial_number'],
            name=row['name'],
            status=row['status'],
            last_activity=from_db(row['last_activity']),
            ip_address=row['ip_address'],
            device_model=row['device_model'],
            firmware_version=row['firmware_version'],
            push_version=row['push_version'],
            punch_direction=row['punch_direction'] or 'both',
            created_at=from_db(row['created_at']),
            updated_at=from_db(row['updated_at']),
        )
