from datetime import datetime, timedelta

from adms_server.services.command_queue import command_queue
from adms_server.services.device_registry import device_registry
from adms_server.services.scheduler_service import SchedulerService


class TestSchedulerService:
    def test_registers_housekeeping_jobs(self):
        service = SchedulerService()
        service.start()
        try:
            status = service.get_all_jobs()
        finally:
            service.stop()

        assert status["running"] is True
        assert {job["id"] for job in status["jobs"]} == {
            "command_retry_sweep",
            "stuck_command_reconcile",
            "device_offline_sweep",
            "punch_export",
            "command_purge",
        }
        assert service.is_running is False

    def test_not_started(self):
        assert SchedulerService().get_all_jobs() == {"running": False, "jobs": []}

    def test_job_bodies_run_against_the_queue(self):
        service = SchedulerService()
        old = datetime.now() - timedelta(hours=1)
        queued = command_queue.enqueue("DEV1", "INFO", now=old)
        command_queue.dequeue("DEV1", now=old)
        device_registry.touch("DEV2", now=old)

        service._run_stuck_command_reconcile()
        service._run_offline_sweep()
        service._run_punch_export()

        assert command_queue.pending_for_device("DEV1")[0].id == queued.id
        assert device_registry.get("DEV2").status == "offline"

    def test_jobs_endpoint(self, client):
        body = client.get("/api/push/scheduler/jobs").get_json()

        assert body["success"] is True
        assert body["data"]["running"] is False
