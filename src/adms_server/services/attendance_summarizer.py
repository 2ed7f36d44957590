from datetime import date, datetime, time, timedelta
from typing import List, Optional

from adms_server.config.config_manager import DEFAULT_SHIFT_START, config_manager
from adms_server.models.attendance import DailyAttendanceSummary, SummaryStatus
from adms_server.repositories import attendance_repo, summary_repo
from adms_server.shared.logger import get_logger


def parse_shift_start(value: str) -> time:
    hours, _, minutes = (value or DEFAULT_SHIFT_START).partition(":")
    return time(int(hours), int(minutes or 0))


def late_minutes(in_time: Optional[datetime], shift_start: time) -> int:
    """Whole minutes between shift start and first punch; 0 when on time"""
    if in_time is None:
        return 0
    reference = datetime.combine(in_time.date(), shift_start)
    return max(0, int((in_time - reference) // timedelta(minutes=1)))


class AttendanceSummarizer:
    """Recomputes the daily in/out/late digest of an employee"""

    def __init__(self, logger=None):
        self.logger = logger or get_logger("summary")

    def summarize(self, employee_code: str, day: date, punch_times: List[datetime], shift_start: time) -> DailyAttendanceSummary:
        punch_times = sorted(punch_times)

        if not punch_times:
            return DailyAttendanceSummary(employee_code=employee_code, date=day, status=SummaryStatus.ABSENT)

        in_time = punch_times[0]
        if len(punch_times) == 1:
            return DailyAttendanceSummary(
                employee_code=employee_code,
                date=day,
                status=SummaryStatus.MISS_PUNCH,
                in_time=in_time,
                late_minutes=late_minutes(in_time, shift_start),
            )

        out_time = punch_times[-1]
        return DailyAttendanceSummary(
            employee_code=employee_code,
            date=day,
            status=SummaryStatus.PRESENT,
            in_time=in_time,
            out_time=out_time,
            duration_minutes=int((out_time - in_time) // timedelta(minutes=1)),
            late_minutes=late_minutes(in_time, shift_start),
        )

    def _shift_start(self) -> time:
        configured = config_manager.get_default_shift_start()
        try:
            return parse_shift_start(configured)
        except ValueError:
            self.logger.warning(f"Stored shift start '{configured}' is invalid, using {DEFAULT_SHIFT_START}")
            return parse_shift_start(DEFAULT_SHIFT_START)

    def recompute(self, employee_code: str, day: date) -> DailyAttendanceSummary:
        """Rebuild and store the summary for one employee on one day"""
        punches = attendance_repo.get_for_day(employee_code, day)
        shift_start = self._shift_start()
        summary = self.summarize(employee_code, day, [p.punch_time for p in punches], shift_start)
        summary_repo.upsert(summary)
        self.logger.debug(
            f"Summary {employee_code} {day}: {summary.status} late={summary.late_minutes}"
        )
        return summary

    def recompute_range(self, start: date, end: date, employee_code: Optional[str] = None) -> int:
        """Recompute every (employee, day) with punches between start and end inclusive"""
        if end < start:
            raise ValueError("end date must not be before start date")
        pairs = attendance_repo.get_employee_days(start, end, employee_code)
        for code, day in pairs:
            self.recompute(code, day)
        self.logger.info(f"Recomputed {len(pairs)} daily summaries between {start} and {end}")
        return len(pairs)

    def get(self, employee_code: str, day: date) -> Optional[DailyAttendanceSummary]:
        return summary_repo.get(employee_code, day)


attendance_summarizer = AttendanceSummarizer()
