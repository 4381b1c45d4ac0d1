import logging
import os
import sqlite3
import threading
from contextlib import contextmanager

from mirrorsync.paths import STATE_DB_FILE

logger = logging.getLogger(__name__)

MIRROR_TABLES = {
    "folder": ("folders", ("display_name", "folder_type", "parent_remote_id", "total_count", "unread_count")),
    "message": ("messages", ("subject", "received_at", "is_read", "is_flagged")),
    "event": ("calendar_events", ("subject", "start_time", "end_time", "response_status")),
    "channel": ("channels", ("team_id", "display_name")),
    "channel_message": ("channel_messages", ("reply_to_remote_id", "posted_at")),
    "contact": ("contacts", ("display_name", "email", "company")),
}

# Typed columns filled from a differently named normalized field.
COLUMN_SOURCES = {"posted_at": "created_at"}

_COLUMN_TYPES = {
    "total_count": "INTEGER",
    "unread_count": "INTEGER",
    "is_read": "INTEGER",
    "is_flagged": "INTEGER",
}


def _mirror_table_ddl(table, columns):
    extra = "".join(f"                {name} {_COLUMN_TYPES.get(name, 'TEXT')},\n" for name in columns)
    return f"""
            CREATE TABLE IF NOT EXISTS {table} (
                local_id TEXT PRIMARY KEY,
                account_id TEXT NOT NULL,
                parent_key TEXT NOT NULL DEFAULT '',
                remote_id TEXT NOT NULL,
{extra}                data TEXT NOT NULL,
                is_deleted INTEGER NOT NULL DEFAULT 0,
                deleted_at INTEGER,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                UNIQUE (account_id, parent_key, remote_id)
            );
            CREATE INDEX IF NOT EXISTS idx_{table}_remote ON {table}(account_id, remote_id);
    """


class Database:
    """SQLite database shared by the state, subscription and mirror stores."""

    SCHEMA_VERSION = 2

    def __init__(self, db_path=None):
        self.db_path = db_path or STATE_DB_FILE
        self._local = threading.local()
        db_dir = os.path.dirname(self.db_path)
        if db_dir:  # Skip for :memory: or relative paths without directory
            os.makedirs(db_dir, exist_ok=True)
        self._init_schema()

    @property
    def conn(self):
        """Thread-local database connection."""
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self._local.conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30)
            self._local.conn.row_factory = sqlite3.Row
            self._local.conn.execute("PRAGMA journal_mode=WAL")
            self._local.conn.execute("PRAGMA foreign_keys=ON")
        return self._local.conn

    @contextmanager
    def transaction(self):
        """Run a block under one write transaction, committing on success."""
        conn = self.conn
        if conn.in_transaction:
            conn.commit()
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        conn.commit()

    def close(self):
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    def _init_schema(self):
        """Create database tables if they don't exist."""
        conn = self.conn
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            );

            CREATE TABLE IF NOT EXISTS accounts (
                account_id TEXT PRIMARY KEY,
                email TEXT,
                status TEXT NOT NULL DEFAULT 'active',
                status_message TEXT,
                last_full_sync_at INTEGER,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS sync_state (
                account_id TEXT NOT NULL,
                scope TEXT NOT NULL,
                cursor TEXT,
                status TEXT NOT NULL DEFAULT 'pending',
                last_sync_at INTEGER,
                error_message TEXT,
                lease_owner TEXT,
                lease_expires_at INTEGER,
                updated_at INTEGER NOT NULL,
                PRIMARY KEY (account_id, scope)
            );

            CREATE TABLE IF NOT EXISTS webhook_subscriptions (
                subscription_id TEXT PRIMARY KEY,
                account_id TEXT NOT NULL,
                resource_type TEXT NOT NULL,
                resource_path TEXT NOT NULL,
                change_types TEXT NOT NULL,
                notify_url TEXT NOT NULL,
                expires_at INTEGER NOT NULL,
                client_state TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'active',
                created_at INTEGER NOT NULL,
                renewed_at INTEGER
            );

            CREATE TABLE IF NOT EXISTS webhook_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                subscription_id TEXT NOT NULL,
                account_id TEXT,
                change_type TEXT,
                resource TEXT,
                resource_id TEXT,
                outcome TEXT NOT NULL,
                received_at INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_subscriptions_account ON webhook_subscriptions(account_id, status);
            CREATE INDEX IF NOT EXISTS idx_subscriptions_expiry ON webhook_subscriptions(status, expires_at);
            CREATE INDEX IF NOT EXISTS idx_webhook_logs_subscription ON webhook_logs(subscription_id);
        """
        )
        conn.executescript("".join(_mirror_table_ddl(table, cols) for table, cols in MIRROR_TABLES.values()))
        current_version = self._current_schema_version(conn)
        if current_version < 1:
            self._migrate_to_v1(conn)
        if current_version < 2:
            self._migrate_to_v2(conn)
        self._set_schema_version(conn, self.SCHEMA_VERSION)
        conn.commit()

    @staticmethod
    def _current_schema_version(conn):
        cur = conn.execute("SELECT version FROM schema_version ORDER BY version DESC LIMIT 1")
        row = cur.fetchone()
        return int(row["version"]) if row else 0

    @staticmethod
    def _set_schema_version(conn, version):
        conn.execute("DELETE FROM schema_version")
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (int(version),))

    @staticmethod
    def _migrate_to_v1(conn):
        # Baseline schema is created in _init_schema via CREATE TABLE IF NOT EXISTS.
        _ = conn

    @staticmethod
    def _migrate_to_v2(conn):
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS attachments (
                local_id TEXT PRIMARY KEY,
                account_id TEXT NOT NULL,
                message_remote_id TEXT NOT NULL,
                remote_id TEXT NOT NULL,
                name TEXT,
                content_type TEXT,
                size INTEGER,
                is_inline INTEGER DEFAULT 0,
                content_base64 TEXT,
                content_stored INTEGER NOT NULL DEFAULT 0,
                created_at INTEGER NOT NULL,
                UNIQUE (account_id, message_remote_id, remote_id)
            );

            CREATE TABLE IF NOT EXISTS account_tokens (
                account_id TEXT PRIMARY KEY,
                access_token TEXT NOT NULL,
                refresh_token TEXT,
                expires_at INTEGER NOT NULL,
                scopes TEXT,
                last_refreshed_at INTEGER,
                refresh_failure_count INTEGER NOT NULL DEFAULT 0,
                last_refresh_error TEXT
            );
            """
        )
        logger.debug("Applied schema migration v2 (attachments, account_tokens)")
