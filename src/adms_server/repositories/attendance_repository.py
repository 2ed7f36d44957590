from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple
from adms_server.models.attendance import AttendancePunch, SyncStatus
from adms_server.database.connection import db_manager
from adms_server.utils.timefmt import from_db, now_db, to_db


class AttendanceRepository:
    """Attendance punch database operations"""

    def upsert(self, punch: AttendancePunch) -> Tuple[AttendancePunch, bool]:
        """Insert a punch, or refresh raw line, upload time and state of an existing one.

        Returns the stored punch and whether a new row was created.
        """
        punch_time = to_db(punch.punch_time)
        upload_time = to_db(punch.upload_time) or now_db()
        query = '''
            INSERT INTO attendance_logs (
                employee_code, device_serial, punch_time, punch_state,
                verification_mode, work_code, raw_data, upload_time, sync_status
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(employee_code, punch_time) DO UPDATE SET
                raw_data = excluded.raw_data,
                upload_time = excluded.upload_time,
                punch_state = excluded.punch_state
        '''
        with db_manager.transaction() as cursor:
            cursor.execute(
                "SELECT id FROM attendance_logs WHERE employee_code = ? AND punch_time = ?",
                (punch.employee_code, punch_time),
            )
            created = cursor.fetchone() is None
            cursor.execute(query, (
                punch.employee_code, punch.device_serial, punch_time, punch.punch_state,
                punch.verification_mode, punch.work_code, punch.raw_data, upload_time,
                SyncStatus.PENDING,
            ))
        return self.get_by_key(punch.employee_code, punch.punch_time), created

    def get_by_key(self, employee_code: str, punch_time: datetime) -> Optional[AttendancePunch]:
        row = db_manager.fetch_one(
            "SELECT * FROM attendance_logs WHERE employee_code = ? AND punch_time = ?",
            (employee_code, to_db(punch_time)),
        )
        return self._row_to_punch(row) if row else None

    def get_for_day(self, employee_code: str, day: date) -> List[AttendancePunch]:
        """Punches of one employee on one calendar day, earliest first"""
        start = datetime.combine(day, datetime.min.time())
        end = start + timedelta(days=1)
        rows = db_manager.fetch_all(
            '''
            SELECT * FROM attendance_logs
            WHERE employee_code = ? AND punch_time >= ? AND punch_time < ?
            ORDER BY punch_time ASC
            ''',
            (employee_code, to_db(start), to_db(end)),
        )
        return [self._row_to_punch(row) for row in rows]

    def get_employee_days(self, start: date, end: date, employee_code: str = None) -> List[Tuple[str, date]]:
        """Distinct (employee, day) pairs with punches in the inclusive date range"""
        conditions = ["punch_time >= ?", "punch_time < ?"]
        params = [
            to_db(datetime.combine(start, datetime.min.time())),
            to_db(datetime.combine(end + timedelta(days=1), datetime.min.time())),
        ]
        if employee_code:
            conditions.append("employee_code = ?")
            params.append(employee_code)

        query = f'''
            SELECT DISTINCT employee_code, substr(punch_time, 1, 10) AS day
            FROM attendance_logs WHERE {" AND ".join(conditions)}
            ORDER BY day, employee_code
        '''
        rows = db_manager.fetch_all(query, tuple(params))
        return [(row['employee_code'], date.fromisoformat(row['day'])) for row in rows]

    def get_pending_sync(self, limit: int = 100) -> List[AttendancePunch]:
        """Punches not yet exported downstream"""
        rows = db_manager.fetch_all(
            "SELECT * FROM attendance_logs WHERE sync_status = ? ORDER BY punch_time ASC LIMIT ?",
            (SyncStatus.PENDING, limit),
        )
        return [self._row_to_punch(row) for row in rows]

    def mark_synced(self, ids: List[int]) -> int:
        if not ids:
            return 0
        placeholders = ','.join('?' for _ in ids)
        cursor = db_manager.execute_query(
            f"UPDATE attendance_logs SET sync_status = ?, synced_at = ?, error_message = NULL WHERE id IN ({placeholders})",
            (SyncStatus.SYNCED, now_db(), *ids),
        )
        return cursor.rowcount

    def mark_error(self, ids: List[int], message: str) -> int:
        if not ids:
            return 0
        placeholders = ','.join('?' for _ in ids)
        cursor = db_manager.execute_query(
            f"UPDATE attendance_logs SET sync_status = ?, error_message = ? WHERE id IN ({placeholders})",
            (SyncStatus.ERROR, message, *ids),
        )
        return cursor.rowcount

    def count(self, employee_code: str = None) -> int:
        if employee_code:
            row = db_manager.fetch_one(
                "SELECT COUNT(*) AS count FROM attendance_logs WHERE employee_code = ?",
                (employee_code,),
            )
        else:
            row = db_manager.fetch_one("SELECT COUNT(*) AS count FROM attendance_logs")
        return row['count'] if row else 0

    def _row_to_punch(self, row) -> AttendancePunch:
        return AttendancePunch(
            id=row['id'],
            employee_code=row['employee_code'],
            device_serial=row['device_serial'],
            punch_time=from_db(row['punch_time']),
            punch_state=row['punch_state'],
            verification_mode=row['verification_mode'],
            work_code=row['work_code'],
            raw_data=row['raw_data'],
            upload_time=from_db(row['upload_time']),
            sync_status=row['sync_status'],
            synced_at=from_db(row['synced_at']),
            error_message=row['error_message'],
            created_at=from_db(row['created_at']),
        )
