from __future__ import annotations
from typing import Optional
import logging

from common.deps import content_conn

logger = logging.getLogger(__name__)

TOKEN_SETTING_KEY = 'easyverein_api_token'


class SettingsRepo:
    """Key/value rows in system_settings (holds the refreshed API token)"""

    def init_table(self, cursor):
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS system_settings (
                setting_key   VARCHAR(100) PRIMARY KEY,
                setting_value TEXT,
                updated_at    TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_by    INTEGER
            )
        """)

    def get_setting(self, key: str) -> Optional[str]:
        with content_conn() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT setting_value FROM system_settings WHERE setting_key = %s LIMIT 1",
                (key,)
            )
            row = cursor.fetchone()
        return row[0] if row and row[0] else None

    def set_setting(self, key: str, value: str) -> None:
        with content_conn() as conn:
            cursor = conn.cursor()
            self.init_table(cursor)
            cursor.execute("""
                INSERT INTO system_settings (setting_key, setting_value, updated_at)
                VALUES (%s, %s, NOW())
                ON CONFLICT (setting_key) DO UPDATE SET
                    setting_value = EXCLUDED.setting_value,
                    updated_at = NOW()
            """, (key, value))
        logger.info(f"Setting '{key}' saved to system_settings")

    def get_api_token(self) -> Optional[str]:
        return self.get_setting(TOKEN_SETTING_KEY)

    def save_api_token(self, token: str) -> None:
        self.set_setting(TOKEN_SETTING_KEY, token)
