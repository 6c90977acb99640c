import sqlite3
from typing import Optional
from productsync.data.db_context import get_db_path

FIRST_RUN_COMPLETE = "first_run_complete"
AUTO_SYNC_ENABLED = "auto_sync_enabled"

class KVStore:
    """Gerencia persistência de metadados simples (Chave-Valor) no banco local"""

    def __init__(self, path):
        self.db_path = get_db_path(path)
        self._init_table()

    def _init_table(self):
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS sys_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT value FROM sys_meta WHERE key = ?", (key,))
            row = cursor.fetchone()
            return row[0] if row else default

    def set(self, key: str, value: str):
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO sys_meta (key, value) VALUES (?, ?)",
                (key, value)
            )

    def delete(self, key: str):
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("DELETE FROM sys_meta WHERE key = ?", (key,))

    def get_flag(self, key: str, default: bool = False) -> bool:
        value = self.get(key)
        return default if value is None else value == "1"

    def set_flag(self, key: str, enabled: bool):
        self.set(key, "1" if enabled else "0")
