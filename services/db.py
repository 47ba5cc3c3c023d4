import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path

import services.util as u
import services.logger as log
from services.models import Bridge, LogRecord, Masquerade, Settings

l = log.get_logger()


class Store(ABC):
    """Storage collaborator the relay core reads from and logs into."""

    @abstractmethod
    def get_settings(self) -> Settings: ...

    @abstractmethod
    def get_bridges(self) -> list[Bridge]: ...

    @abstractmethod
    def get_masquerades(self, bridge_id: str) -> list[Masquerade]: ...

    @abstractmethod
    def create_log(self, record: LogRecord) -> None: ...

    @abstractmethod
    def clear_error_logs(self) -> None: ...

    # Message-id mapping used for reply translation.  Stores that do not
    # keep mappings simply never translate reply ids.

    def save_mapping(self, relay_id: str, platform: str, channel_id: str, platform_msg_id: str):
        pass

    def get_relay_id(self, platform: str, platform_msg_id: str) -> str | None:
        return None

    def get_platform_msg_id(self, relay_id: str, platform: str) -> str | None:
        return None


class SqliteStore(Store):
    """SQLite-backed store for settings, bridges, masquerades, logs and message mappings."""

    def __init__(self, db_path: str | Path | None = None):
        self._local = threading.local()
        self._db_path = Path(db_path) if db_path else Path(u.get_data_path()) / "bridge.db"
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        if not hasattr(self._local, "conn"):
            self._local.conn = sqlite3.connect(self._db_path)
        return self._local.conn

    def _init_db(self):
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._get_conn()
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                platform TEXT,
                key TEXT,
                value TEXT,
                PRIMARY KEY (platform, key)
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS bridges (
                id TEXT PRIMARY KEY,
                discord_channel_id TEXT NOT NULL,
                revolt_channel_id TEXT NOT NULL,
                enabled INTEGER NOT NULL DEFAULT 1
            )
        """)
        # One override per (bridge, user); duplicates cannot be stored.
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS masquerades (
                bridge_id TEXT,
                user_id TEXT,
                username TEXT NOT NULL,
                avatar TEXT,
                PRIMARY KEY (bridge_id, user_id)
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT,
                level TEXT,
                message TEXT,
                metadata TEXT
            )
        """)
        # relay_id groups the source message with every copy of it
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS message_mappings (
                relay_id TEXT,
                platform TEXT,
                channel_id TEXT,
                platform_msg_id TEXT,
                PRIMARY KEY (platform, platform_msg_id)
            )
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_relay_id ON message_mappings (relay_id)")
        conn.commit()

    def close(self):
        if hasattr(self._local, "conn"):
            self._local.conn.close()
            del self._local.conn

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def save_settings(self, platform: str, options: dict):
        """Replace every stored option for *platform* with *options*."""
        conn = self._get_conn()
        with conn:
            conn.execute("DELETE FROM settings WHERE platform = ?", (platform,))
            conn.executemany(
                "INSERT INTO settings (platform, key, value) VALUES (?, ?, ?)",
                [(platform, k, json.dumps(v)) for k, v in options.items()],
            )

    def get_settings(self) -> Settings:
        rows = self._get_conn().execute("SELECT platform, key, value FROM settings").fetchall()
        platforms: dict[str, dict] = {}
        for platform, key, value in rows:
            platforms.setdefault(platform, {})[key] = json.loads(value)
        return Settings(platforms=platforms)

    # ------------------------------------------------------------------
    # Bridges & masquerades
    # ------------------------------------------------------------------

    def save_bridge(self, bridge: Bridge):
        conn = self._get_conn()
        conn.execute("""
            INSERT OR REPLACE INTO bridges (id, discord_channel_id, revolt_channel_id, enabled)
            VALUES (?, ?, ?, ?)
        """, (bridge.id, bridge.discord_channel_id, bridge.revolt_channel_id, int(bridge.enabled)))
        conn.commit()

    def get_bridges(self) -> list[Bridge]:
        rows = self._get_conn().execute("""
            SELECT id, discord_channel_id, revolt_channel_id, enabled
            FROM bridges ORDER BY rowid
        """).fetchall()
        return [Bridge(id=r[0], discord_channel_id=r[1], revolt_channel_id=r[2], enabled=bool(r[3]))
                for r in rows]

    def save_masquerade(self, masquerade: Masquerade):
        conn = self._get_conn()
        conn.execute("""
            INSERT OR REPLACE INTO masquerades (bridge_id, user_id, username, avatar)
            VALUES (?, ?, ?, ?)
        """, (masquerade.bridge_id, masquerade.user_id, masquerade.username, masquerade.avatar))
        conn.commit()

    def get_masquerades(self, bridge_id: str) -> list[Masquerade]:
        rows = self._get_conn().execute("""
            SELECT bridge_id, user_id, username, avatar
            FROM masquerades WHERE bridge_id = ? ORDER BY rowid
        """, (bridge_id,)).fetchall()
        return [Masquerade(bridge_id=r[0], user_id=r[1], username=r[2], avatar=r[3]) for r in rows]

    def replace_bridges(self, bridges: list[Bridge], masquerades: list[Masquerade]):
        """Swap the stored bridges and masquerades for exactly these, in one transaction."""
        conn = self._get_conn()
        with conn:
            conn.execute("DELETE FROM masquerades")
            conn.execute("DELETE FROM bridges")
            conn.executemany("""
                INSERT INTO bridges (id, discord_channel_id, revolt_channel_id, enabled)
                VALUES (?, ?, ?, ?)
            """, [(b.id, b.discord_channel_id, b.revolt_channel_id, int(b.enabled)) for b in bridges])
            conn.executemany("""
                INSERT INTO masquerades (bridge_id, user_id, username, avatar)
                VALUES (?, ?, ?, ?)
            """, [(m.bridge_id, m.user_id, m.username, m.avatar) for m in masquerades])

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    def create_log(self, record: LogRecord):
        conn = self._get_conn()
        conn.execute("""
            INSERT INTO logs (timestamp, level, message, metadata) VALUES (?, ?, ?, ?)
        """, (record.timestamp, record.level, record.message, json.dumps(record.metadata)))
        conn.commit()

    def get_logs(self, level: str | None = None) -> list[LogRecord]:
        sql = "SELECT timestamp, level, message, metadata FROM logs"
        params: tuple = ()
        if level:
            sql += " WHERE level = ?"
            params = (level,)
        rows = self._get_conn().execute(sql + " ORDER BY id", params).fetchall()
        return [LogRecord(timestamp=r[0], level=r[1], message=r[2], metadata=json.loads(r[3]))
                for r in rows]

    def clear_error_logs(self):
        conn = self._get_conn()
        conn.execute("DELETE FROM logs WHERE level = 'error'")
        conn.commit()

    # ------------------------------------------------------------------
    # Message mappings
    # ------------------------------------------------------------------

    def save_mapping(self, relay_id: str, platform: str, channel_id: str, platform_msg_id: str):
        """Store a mapping between a relay id and a platform-specific message id."""
        conn = self._get_conn()
        try:
            conn.execute("""
                INSERT OR REPLACE INTO message_mappings (relay_id, platform, channel_id, platform_msg_id)
                VALUES (?, ?, ?, ?)
            """, (relay_id, platform, channel_id, platform_msg_id))
            conn.commit()
        except sqlite3.Error as e:
            l.error(f"Failed to save message mapping: {e}")

    def get_relay_id(self, platform: str, platform_msg_id: str) -> str | None:
        row = self._get_conn().execute("""
            SELECT relay_id FROM message_mappings
            WHERE platform = ? AND platform_msg_id = ?
        """, (platform, platform_msg_id)).fetchone()
        return row[0] if row else None

    def get_platform_msg_id(self, relay_id: str, platform: str) -> str | None:
        row = self._get_conn().execute("""
            SELECT platform_msg_id FROM message_mappings
            WHERE relay_id = ? AND platform = ?
        """, (relay_id, platform)).fetchone()
        return row[0] if row else None
