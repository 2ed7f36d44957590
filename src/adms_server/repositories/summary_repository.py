from datetime import date
from typing import Optional
from adms_server.models.attendance import DailyAttendanceSummary
from adms_server.database.connection import db_manager
from adms_server.utils.timefmt import from_db, now_db, to_db


class SummaryRepository:
    """Daily attendance summaries keyed by (employee, date)"""

    def upsert(self, summary: DailyAttendanceSummary, now=None) -> None:
        query = '''
            INSERT INTO attendance_daily_summary (
                employee_code, date, in_time, out_time, duration_minutes,
                late_minutes, status, last_calculated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(employee_code, date) DO UPDATE SET
                in_time = excluded.in_time,
                out_time = excluded.out_time,
                duration_minutes = excluded.duration_minutes,
                late_minutes = excluded.late_minutes,
                status = excluded.status,
                last_calculated_at = excluded.last_calculated_at
        '''
        db_manager.execute_query(query, (
            summary.employee_code, summary.date.isoformat(),
            to_db(summary.in_time), to_db(summary.out_time),
            summary.duration_minutes, summary.late_minutes, summary.status,
            now_db(now),
        ))

    def get(self, employee_code: str, day: date) -> Optional[DailyAttendanceSummary]:
        row = db_manager.fetch_one(
            "SELECT * FROM attendance_daily_summary WHERE employee_code = ? AND date = ?",
            (employee_code, day.isoformat()),
        )
        if not row:
            return None
        return DailyAttendanceSummary(
            employee_code=row['employee_code'],
            date=date.fromisoformat(row['date']),
            status=row['status'],
            in_time=from_db(row['in_time']),
            out_time=from_db(row['out_time']),
            duration_minutes=row['duration_minutes'] or 0,
            late_minutes=row['late_minutes'] or 0,
            last_calculated_at=from_db(row['last_calculated_at']),
        )
