import json
import logging
import time
import uuid

from mirrorsync.domain.models import UpsertOutcome
from mirrorsync.infra.database import COLUMN_SOURCES, MIRROR_TABLES

logger = logging.getLogger(__name__)


class MirrorStore:
    """Mirrored folders, messages, events, channels and channel messages.

    Rows are keyed by (account, parent key, remote id). Removal only ever sets
    the soft-delete flag so dependent rows keep their references.
    """

    def __init__(self, database):
        self.db = database

    @staticmethod
    def _table(entity_type):
        try:
            return MIRROR_TABLES[entity_type]
        except KeyError:
            raise ValueError(f"Unknown mirror entity type: {entity_type}") from None

    @staticmethod
    def _encode(fields):
        return json.dumps(fields, sort_keys=True, separators=(",", ":"), default=str)

    @staticmethod
    def _column_value(value):
        if isinstance(value, bool):
            return 1 if value else 0
        return value

    @staticmethod
    def _row_to_entity(row):
        return {
            "localId": row["local_id"],
            "accountId": row["account_id"],
            "parentKey": row["parent_key"],
            "remoteId": row["remote_id"],
            "isDeleted": bool(row["is_deleted"]),
            "fields": json.loads(row["data"]),
            "createdAt": row["created_at"],
            "updatedAt": row["updated_at"],
        }

    def upsert(self, account_id, entity_type, remote_id, fields, parent_key=""):
        """Insert or update one entity and report whether anything changed."""
        table, columns = self._table(entity_type)
        parent_key = parent_key or ""
        data = self._encode(fields)
        now = int(time.time())
        column_values = [self._column_value(fields.get(COLUMN_SOURCES.get(name, name))) for name in columns]

        with self.db.transaction() as conn:
            existing = conn.execute(
                f"SELECT local_id, data, is_deleted FROM {table} WHERE account_id = ? AND parent_key = ? AND remote_id = ?",
                (account_id, parent_key, remote_id),
            ).fetchone()
            if existing is None:
                conn.execute(
                    f"""INSERT INTO {table}
                        (local_id, account_id, parent_key, remote_id, {', '.join(columns)},
                         data, is_deleted, created_at, updated_at)
                        VALUES (?, ?, ?, ?, {', '.join('?' for _ in columns)}, ?, 0, ?, ?)""",
                    (uuid.uuid4().hex, account_id, parent_key, remote_id, *column_values, data, now, now),
                )
                return UpsertOutcome.CREATED
            if existing["data"] == data and not existing["is_deleted"]:
                return UpsertOutcome.UNCHANGED
            assignments = ", ".join(f"{name} = ?" for name in columns)
            conn.execute(
                f"""UPDATE {table}
                    SET {assignments}, data = ?, is_deleted = 0, deleted_at = NULL, updated_at = ?
                    WHERE local_id = ?""",
                (*column_values, data, now, existing["local_id"]),
            )
            return UpsertOutcome.UPDATED

    def soft_delete(self, account_id, entity_type, remote_id, parent_key=""):
        """Flag a live entity as deleted. Returns True if a live row was flagged."""
        table, _ = self._table(entity_type)
        now = int(time.time())
        conn = self.db.conn
        cur = conn.execute(
            f"""UPDATE {table} SET is_deleted = 1, deleted_at = ?, updated_at = ?
                WHERE account_id = ? AND parent_key = ? AND remote_id = ? AND is_deleted = 0""",
            (now, now, account_id, parent_key or "", remote_id),
        )
        conn.commit()
        return cur.rowcount > 0

    def get(self, account_id, entity_type, remote_id, parent_key=""):
        table, _ = self._table(entity_type)
        row = self.db.conn.execute(
            f"SELECT * FROM {table} WHERE account_id = ? AND parent_key = ? AND remote_id = ?",
            (account_id, parent_key or "", remote_id),
        ).fetchone()
        return self._row_to_entity(row) if row else None

    def list_entities(self, account_id, entity_type, parent_key=None, include_deleted=False, order_by=None):
        table, columns = self._table(entity_type)
        clauses = ["account_id = ?"]
        params = [account_id]
        if parent_key is not None:
            clauses.append("parent_key = ?")
            params.append(parent_key)
        if not include_deleted:
            clauses.append("is_deleted = 0")
        order = order_by if order_by in columns else "created_at"
        cur = self.db.conn.execute(
            f"SELECT * FROM {table} WHERE {' AND '.join(clauses)} ORDER BY {order}, remote_id",
            tuple(params),
        )
        return [self._row_to_entity(row) for row in cur.fetchall()]

    def count(self, account_id, entity_type, parent_key=None, include_deleted=False):
        table, _ = self._table(entity_type)
        clauses = ["account_id = ?"]
        params = [account_id]
        if parent_key is not None:
            clauses.append("parent_key = ?")
            params.append(parent_key)
        if not include_deleted:
            clauses.append("is_deleted = 0")
        cur = self.db.conn.execute(
            f"SELECT COUNT(*) AS count FROM {table} WHERE {' AND '.join(clauses)}",
            tuple(params),
        )
        return cur.fetchone()["count"]

    def remote_ids(self, account_id, entity_type, parent_key=None):
        """Remote ids of live entities, optionally restricted to one parent."""
        return {entity["remoteId"] for entity in self.list_entities(account_id, entity_type, parent_key=parent_key)}

    def find_parent_key(self, account_id, entity_type, remote_id):
        """Locate the parent (e.g. folder) of a live entity by remote id alone."""
        table, _ = self._table(entity_type)
        row = self.db.conn.execute(
            f"""SELECT parent_key FROM {table}
                WHERE account_id = ? AND remote_id = ? AND is_deleted = 0
                ORDER BY updated_at DESC LIMIT 1""",
            (account_id, remote_id),
        ).fetchone()
        return row["parent_key"] if row else None

    def upsert_attachment(self, account_id, message_remote_id, remote_id, fields, content_base64=None):
        """Store attachment metadata; returns False when it was already mirrored."""
        conn = self.db.conn
        cur = conn.execute(
            """INSERT OR IGNORE INTO attachments
               (local_id, account_id, message_remote_id, remote_id, name, content_type, size,
                is_inline, content_base64, content_stored, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                uuid.uuid4().hex,
                account_id,
                message_remote_id,
                remote_id,
                fields.get("name"),
                fields.get("content_type"),
                fields.get("size"),
                1 if fields.get("is_inline") else 0,
                content_base64,
                1 if content_base64 is not None else 0,
                int(time.time()),
            ),
        )
        conn.commit()
        return cur.rowcount == 1

    def has_attachment(self, account_id, message_remote_id, remote_id):
        row = self.db.conn.execute(
            "SELECT 1 FROM attachments WHERE account_id = ? AND message_remote_id = ? AND remote_id = ?",
            (account_id, message_remote_id, remote_id),
        ).fetchone()
        return row is not None

    def get_attachments(self, account_id, message_remote_id):
        cur = self.db.conn.execute(
            """SELECT remote_id, name, content_type, size, is_inline, content_stored
               FROM attachments WHERE account_id = ? AND message_remote_id = ?
               ORDER BY name, remote_id""",
            (account_id, message_remote_id),
        )
        return [
            {
                "id": row["remote_id"],
                "name": row["name"],
                "contentType": row["content_type"],
                "size": row["size"],
                "isInline": bool(row["is_inline"]),
                "contentStored": bool(row["content_stored"]),
            }
            for row in cur.fetchall()
        ]

    def purge_account(self, account_id):
        """Hard-delete every mirrored row of an account (account removal only)."""
        with self.db.transaction() as conn:
            for table, _ in MIRROR_TABLES.values():
                conn.execute(f"DELETE FROM {table} WHERE account_id = ?", (account_id,))
            conn.execute("DELETE FROM attachments WHERE account_id = ?", (account_id,))
        logger.info("Purged mirrored data for account %s", account_id)
