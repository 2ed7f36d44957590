from typing import Optional

from adms_server.database.connection import db_manager
from adms_server.utils.timefmt import now_db

# key -> (default value, description)
DEFAULT_SETTINGS = {
    'default_shift_start': ('09:00', 'Shift start used for late-minute calculation (HH:MM)'),
    'punch_export_url': ('', 'Endpoint receiving pending punches; export is disabled when empty'),
    'punch_export_api_key': ('', 'API key sent as x-api-key with punch exports'),
}


class SettingRepository:
    """Runtime-editable settings stored in app_settings"""

    def get_value(self, key: str) -> Optional[str]:
        row = db_manager.fetch_one("SELECT value FROM app_settings WHERE key = ?", (key,))
        return row['value'] if row else None

    def set(self, key: str, value: str, description: str = None) -> bool:
        query = '''
            INSERT INTO app_settings (key, value, description, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                description = COALESCE(excluded.description, app_settings.description),
                updated_at = excluded.updated_at
        '''
        cursor = db_manager.execute_query(query, (key, value, description, now_db()))
        return cursor.rowcount > 0

    def initialize_defaults(self) -> int:
        """Insert missing defaults; values already stored are left alone"""
        added = 0
        for key, (value, description) in DEFAULT_SETTINGS.items():
            cursor = db_manager.execute_query(
                "INSERT OR IGNORE INTO app_settings (key, value, description, updated_at) VALUES (?, ?, ?, ?)",
                (key, value, description, now_db()),
            )
            added += cursor.rowcount
        return added
