import time
from typing import Any, Dict, List, Optional

import requests

from adms_server.config.config_manager import config_manager
from adms_server.models.attendance import AttendancePunch
from adms_server.repositories import attendance_repo
from adms_server.shared.exceptions import ExportError
from adms_server.shared.logger import get_logger
from adms_server.utils.retry import call_with_refresh


class PunchExportService:
    """Posts pending punches to the downstream HRMS endpoint"""

    def __init__(self, logger=None, session=None):
        self.logger = logger or get_logger("export")
        self.session = session or requests.Session()
        self._url: Optional[str] = None
        self._api_key: str = ""

    def reload_config(self) -> None:
        self._url = config_manager.get_punch_export_url()
        self._api_key = config_manager.get_punch_export_api_key()

    def is_configured(self) -> bool:
        return bool(config_manager.get_punch_export_url())

    def export_pending(self, limit: int = 100) -> Dict[str, Any]:
        """Send up to ``limit`` pending punches; marks them synced or error"""
        self.reload_config()
        if not self._url:
            self.logger.info("Punch export endpoint not configured, skipping")
            return {"skipped": True, "sent_count": 0}

        punches = attendance_repo.get_pending_sync(limit)
        if not punches:
            return {"skipped": False, "sent_count": 0}

        ids = [punch.id for punch in punches]
        try:
            call_with_refresh(
                lambda: self._post(punches),
                self.reload_config,
                retry_on=(requests.exceptions.RequestException, ExportError),
                label="punch export",
            )
        except (requests.exceptions.RequestException, ExportError) as e:
            attendance_repo.mark_error(ids, str(e)[:500])
            self.logger.error(f"Punch export failed for {len(ids)} punch(es): {e}")
            return {"skipped": False, "sent_count": 0, "error": str(e)}

        attendance_repo.mark_synced(ids)
        self.logger.info(f"Exported {len(ids)} punch(es) to {self._url}")
        return {"skipped": False, "sent_count": len(ids)}

    def _post(self, punches: List[AttendancePunch]) -> None:
        headers = {
            'Content-Type': 'application/json',
            'x-api-key': self._api_key,
        }
        body = {
            'timestamp': int(time.time()),
            'punches': [
                {
                    'employee_code': p.employee_code,
                    'punch_time': p.punch_time.strftime('%Y-%m-%d %H:%M:%S'),
                    'punch_state': p.punch_state,
                    'verification_mode': p.verification_mode,
                    'device_serial': p.device_serial,
                }
                for p in punches
            ],
        }

        response = self.session.post(self._url, json=body, headers=headers, timeout=30)
        if response.status_code >= 400:
            raise ExportError(f"HTTP {response.status_code}: {response.text[:200]}")


punch_export_service = PunchExportService()
