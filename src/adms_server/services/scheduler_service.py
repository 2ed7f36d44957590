from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from adms_server.config import settings
from adms_server.services.command_queue import command_queue
from adms_server.services.device_registry import device_registry
from adms_server.services.punch_export import punch_export_service
from adms_server.shared.logger import get_logger

HOUSEKEEPING_INTERVAL_SECONDS = 60
PURGE_HOUR = 3


class SchedulerService:
    """Background passes over the command queue, device registry and punch export"""

    def __init__(self):
        self.scheduler = None
        self.logger = get_logger("scheduler")
        self.is_running = False

    def _jobs(self):
        """(id, name, callable, trigger, misfire grace seconds) for every housekeeping job"""
        sweep = settings.RETRY_SWEEP_SECONDS
        every_minute = IntervalTrigger(seconds=HOUSEKEEPING_INTERVAL_SECONDS)
        return [
            ("command_retry_sweep", f"Command retry sweep (every {sweep}s)",
             self._run_retry_sweep, IntervalTrigger(seconds=sweep), sweep),
            ("stuck_command_reconcile", "Requeue commands with no reported result",
             self._run_stuck_command_reconcile, every_minute, HOUSEKEEPING_INTERVAL_SECONDS),
            ("device_offline_sweep", "Mark silent devices offline",
             self._run_offline_sweep, every_minute, HOUSEKEEPING_INTERVAL_SECONDS),
            ("punch_export", "Export pending punches",
             self._run_punch_export, every_minute, HOUSEKEEPING_INTERVAL_SECONDS),
            ("command_purge", f"Purge finished commands older than {settings.COMMAND_RETENTION_DAYS} days",
             self._run_command_purge, CronTrigger(hour=PURGE_HOUR, minute=0), 3600),
        ]

    def start(self):
        if self.scheduler and self.is_running:
            self.logger.warning("[CRON] Scheduler is already running")
            return

        scheduler = BackgroundScheduler()
        scheduler.add_listener(self._on_job_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

        for job_id, name, func, trigger, grace in self._jobs():
            scheduler.add_job(
                func=func,
                trigger=trigger,
                id=job_id,
                name=name,
                replace_existing=True,
                max_instances=1,
                misfire_grace_time=grace,
            )
            self.logger.info(f"[CRON] Scheduled {job_id}: {trigger}")

        scheduler.start()
        self.scheduler = scheduler
        self.is_running = True
        self.logger.info("[CRON] Scheduler started")

    def stop(self):
        if not (self.scheduler and self.is_running):
            return
        self.scheduler.shutdown(wait=False)
        self.is_running = False
        self.logger.info("[CRON] Scheduler stopped")

    def _on_job_event(self, event):
        if event.exception:
            self.logger.error(f"[CRON] Job '{event.job_id}' crashed: {event.exception}")
        else:
            self.logger.debug(f"[CRON] Job '{event.job_id}' finished")

    # Job bodies log their own failures so one bad pass never stops the schedule

    def _run_retry_sweep(self):
        try:
            released = command_queue.retry_sweep()
        except Exception as e:
            self.logger.error(f"[CRON] Retry sweep error: {e}")
            return
        if released:
            self.logger.info(f"[CRON] Retry sweep: {released} command(s) eligible again")

    def _run_stuck_command_reconcile(self):
        try:
            count = command_queue.reconcile_stuck()
        except Exception as e:
            self.logger.error(f"[CRON] Stuck command reconcile error: {e}")
            return
        if count:
            self.logger.warning(f"[CRON] Reconciled {count} command(s) stuck in 'sent'")

    def _run_offline_sweep(self):
        try:
            serials = device_registry.sweep_offline()
        except Exception as e:
            self.logger.error(f"[CRON] Offline sweep error: {e}")
            return
        if serials:
            self.logger.info(f"[CRON] Offline: {', '.join(serials)}")

    def _run_command_purge(self):
        try:
            purged = command_queue.purge()
        except Exception as e:
            self.logger.error(f"[CRON] Command purge error: {e}")
            return
        self.logger.info(f"[CRON] Command purge removed {purged} row(s)")

    def _run_punch_export(self):
        if not punch_export_service.is_configured():
            return
        try:
            result = punch_export_service.export_pending()
        except Exception as e:
            self.logger.error(f"[CRON] Punch export error: {e}")
            return
        if result.get("error"):
            self.logger.warning(f"[CRON] Punch export failed: {result['error']}")
        elif result.get("sent_count"):
            self.logger.info(f"[CRON] Punch export: sent {result['sent_count']} punch(es)")

    def get_all_jobs(self):
        if not self.scheduler:
            return {"running": False, "jobs": []}

        jobs = [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
                "trigger": str(job.trigger),
            }
            for job in self.scheduler.get_jobs()
        ]
        return {"running": self.is_running, "jobs": jobs, "total_jobs": len(jobs)}


scheduler_service = SchedulerService()
