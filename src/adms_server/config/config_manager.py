from datetime import datetime
from typing import Any, Dict, Optional
from adms_server.repositories import setting_repo

DEFAULT_SHIFT_START = "09:00"


class SQLiteConfigManager:
    """Runtime configuration backed by the app_settings table"""

    def get_config(self) -> Dict[str, Any]:
        """Get configuration (for API responses)"""
        return {
            "default_shift_start": self.get_default_shift_start(),
            "punch_export_url": self.get_punch_export_url(),
            "punch_export_api_key": "***" if self.get_punch_export_api_key() else "",
        }

    def save_config(self, config_data: Dict[str, Any]) -> None:
        if config_data.get("default_shift_start"):
            setting_repo.set(
                "default_shift_start",
                self._normalize_shift_start(config_data["default_shift_start"]),
                "Shift start used for late-minute calculation (HH:MM)",
            )

        if "punch_export_url" in config_data:
            setting_repo.set(
                "punch_export_url",
                (config_data["punch_export_url"] or "").strip().rstrip("/"),
                "Endpoint receiving pending punches; export is disabled when empty",
            )

        if "punch_export_api_key" in config_data:
            setting_repo.set(
                "punch_export_api_key",
                config_data["punch_export_api_key"] or "",
                "API key sent as x-api-key with punch exports",
            )

    def get_default_shift_start(self) -> str:
        value = setting_repo.get_value("default_shift_start")
        return value or DEFAULT_SHIFT_START

    def get_punch_export_url(self) -> Optional[str]:
        value = setting_repo.get_value("punch_export_url")
        return value or None

    def get_punch_export_api_key(self) -> str:
        return setting_repo.get_value("punch_export_api_key") or ""

    def _normalize_shift_start(self, value) -> str:
        text = str(value).strip()
        if ":" not in text:
            text += ":00"
        try:
            parsed = datetime.strptime(text, "%H:%M")
        except ValueError:
            raise ValueError(f"Invalid shift start '{value}', expected HH:MM") from None
        return parsed.strftime("%H:%M")


# Create global instance using SQLite
config_manager = SQLiteConfigManager()
