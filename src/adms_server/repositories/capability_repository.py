from typing import List, Optional
from adms_server.models.device import DeviceCapabilities
from adms_server.database.connection import db_manager
from adms_server.utils.timefmt import from_db, now_db


class CapabilityRepository:
    """Device capability profiles.

    Version columns are merged, never downgraded: an incoming zero keeps
    whatever non-zero value is already stored.
    """

    def get(self, device_serial: str) -> Optional[DeviceCapabilities]:
        row = db_manager.fetch_one(
            "SELECT * FROM device_capabilities WHERE device_serial = ?", (device_serial,)
        )
        return self._row_to_capabilities(row) if row else None

    def get_all(self) -> List[DeviceCapabilities]:
        rows = db_manager.fetch_all("SELECT * FROM device_capabilities ORDER BY device_serial")
        return [self._row_to_capabilities(row) for row in rows]

    def merge(self, caps: DeviceCapabilities, now=None) -> DeviceCapabilities:
        """Upsert a profile parsed from a descriptor"""
        timestamp = now_db(now)
        query = '''
            INSERT INTO device_capabilities (
                device_serial, device_model, firmware_version,
                face_supported, finger_supported, palm_supported, card_supported,
                face_major_ver, face_minor_ver, face_format, raw_info,
                detected_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(device_serial) DO UPDATE SET
                device_model = COALESCE(excluded.device_model, device_capabilities.device_model),
                firmware_version = COALESCE(excluded.firmware_version, device_capabilities.firmware_version),
                face_supported = excluded.face_supported,
                finger_supported = excluded.finger_supported,
                palm_supported = excluded.palm_supported,
                card_supported = excluded.card_supported,
                face_major_ver = CASE WHEN excluded.face_major_ver > 0
                    THEN excluded.face_major_ver ELSE device_capabilities.face_major_ver END,
                face_minor_ver = CASE WHEN excluded.face_minor_ver > 0
                    THEN excluded.face_minor_ver ELSE device_capabilities.face_minor_ver END,
                face_format = CASE WHEN excluded.face_format > 0
                    THEN excluded.face_format ELSE device_capabilities.face_format END,
                raw_info = COALESCE(excluded.raw_info, device_capabilities.raw_info),
                updated_at = excluded.updated_at
        '''
        db_manager.execute_query(query, (
            caps.device_serial, caps.device_model, caps.firmware_version,
            int(caps.face_supported), int(caps.finger_supported),
            int(caps.palm_supported), int(caps.card_supported),
            caps.face_major_ver or 0, caps.face_minor_ver or 0, caps.face_format or 0,
            caps.raw_info, timestamp, timestamp
        ))
        return self.get(caps.device_serial)

    def insert_if_missing(self, caps: DeviceCapabilities, now=None) -> bool:
        """Insert a profile only when the device has none yet"""
        timestamp = now_db(now)
        query = '''
            INSERT OR IGNORE INTO device_capabilities (
                device_serial, device_model, firmware_version,
                face_supported, finger_supported, palm_supported, card_supported,
                face_major_ver, face_minor_ver, face_format, raw_info,
                detected_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        '''
        cursor = db_manager.execute_query(query, (
            caps.device_serial, caps.device_model, caps.firmware_version,
            int(caps.face_supported), int(caps.finger_supported),
            int(caps.palm_supported), int(caps.card_supported),
            caps.face_major_ver, caps.face_minor_ver, caps.face_format,
            caps.raw_info, timestamp, timestamp
        ))
        return cursor.rowcount > 0

    def merge_face_version(self, device_serial: str, major: int, minor: int, fmt: int, now=None):
        """Merge versions observed in an uploaded template; creates the row if needed"""
        timestamp = now_db(now)
        query = '''
            INSERT INTO device_capabilities (
                device_serial, face_supported, face_major_ver, face_minor_ver, face_format,
                detected_at, updated_at
            ) VALUES (?, 1, ?, ?, ?, ?, ?)
            ON CONFLICT(device_serial) DO UPDATE SET
                face_supported = 1,
                face_major_ver = CASE WHEN excluded.face_major_ver > 0
                    THEN excluded.face_major_ver ELSE device_capabilities.face_major_ver END,
                face_minor_ver = CASE WHEN excluded.face_minor_ver > 0
                    THEN excluded.face_minor_ver ELSE device_capabilities.face_minor_ver END,
                face_format = CASE WHEN excluded.face_format > 0
                    THEN excluded.face_format ELSE device_capabilities.face_format END,
                updated_at = excluded.updated_at
        '''
        db_manager.execute_query(query, (
            device_serial, major or 0, minor or 0, fmt or 0, timestamp, timestamp
        ))

    def _row_to_capabilities(self, row) -> DeviceCapabilities:
        return DeviceCapabilities(
            device_serial=row['device_serial'],
            device_model=row['device_model'],
            firmware_version=row['firmware_version'],
            face_supported=bool(row['face_supported']),
            finger_supported=bool(row['finger_supported']),
            palm_supported=bool(row['palm_supported']),
            card_supported=bool(row['card_supported']),
            face_major_ver=row['face_major_ver'] or 0,
            face_minor_ver=row['face_minor_ver'] or 0,
            face_format=row['face_format'] or 0,
            raw_info=row['raw_info'],
            detected_at=from_db(row['detected_at']),
            updated_at=from_db(row['updated_at']),
        )
