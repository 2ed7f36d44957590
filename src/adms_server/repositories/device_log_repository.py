from typing import List
from adms_server.database.connection import db_manager


class DeviceLogRepository:
    """Operation and error audit trail reported by terminals"""

    def add_operation(self, device_serial: str, operation_type: str, operator: str, log_time: str, details: str):
        db_manager.execute_query(
            '''
            INSERT INTO device_operation_logs (device_serial, operation_type, operator, log_time, details)
            VALUES (?, ?, ?, ?, ?)
            ''',
            (device_serial, operation_type, operator, log_time, details),
        )

    def add_error(self, device_serial: str, error_code: str, operator: str, log_time: str, details: str):
        db_manager.execute_query(
            '''
            INSERT INTO device_error_logs (device_serial, error_code, operator, log_time, details)
            VALUES (?, ?, ?, ?, ?)
            ''',
            (device_serial, error_code, operator, log_time, details),
        )

    def get_operations(self, device_serial: str, limit: int = 100) -> List[dict]:
        rows = db_manager.fetch_all(
            "SELECT * FROM device_operation_logs WHERE device_serial = ? ORDER BY id DESC LIMIT ?",
            (device_serial, limit),
        )
        return [dict(row) for row in rows]

    def get_errors(self, device_serial: str, limit: int = 100) -> List[dict]:
        rows = db_manager.fetch_all(
            "SELECT * FROM device_error_logs WHERE device_serial = ? ORDER BY id DESC LIMIT ?",
            (device_serial, limit),
        )
        return [dict(row) for row in rows]
