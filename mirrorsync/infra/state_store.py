import logging
import time

from mirrorsync.constants import SYNC_LEASE_TTL_SEC
from mirrorsync.domain.models import Account, AccountStatus, SyncState, SyncStatus

logger = logging.getLogger(__name__)

_UNSET = object()


class SyncStateStore:
    """Accounts and per-scope sync state, including the per-scope sync lease."""

    def __init__(self, database):
        self.db = database

    @staticmethod
    def _row_to_account(row):
        return Account(
            account_id=row["account_id"],
            email=row["email"],
            status=AccountStatus(row["status"]),
            status_message=row["status_message"],
            last_full_sync_at=row["last_full_sync_at"],
        )

    @staticmethod
    def _row_to_state(row):
        return SyncState(
            account_id=row["account_id"],
            scope=row["scope"],
            cursor=row["cursor"],
            status=SyncStatus(row["status"]),
            last_sync_at=row["last_sync_at"],
            error_message=row["error_message"],
            lease_owner=row["lease_owner"],
            lease_expires_at=row["lease_expires_at"],
        )

    def upsert_account(self, account_id, email=None, status=AccountStatus.ACTIVE):
        now = int(time.time())
        conn = self.db.conn
        conn.execute(
            """INSERT INTO accounts (account_id, email, status, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(account_id) DO UPDATE SET
                   email = COALESCE(excluded.email, accounts.email),
                   updated_at = excluded.updated_at""",
            (account_id, email, AccountStatus(status).value, now, now),
        )
        conn.commit()
        return self.get_account(account_id)

    def get_account(self, account_id):
        row = self.db.conn.execute("SELECT * FROM accounts WHERE account_id = ?", (account_id,)).fetchone()
        return self._row_to_account(row) if row else None

    def list_accounts(self, status=None):
        if status is None:
            cur = self.db.conn.execute("SELECT * FROM accounts ORDER BY account_id")
        else:
            cur = self.db.conn.execute(
                "SELECT * FROM accounts WHERE status = ? ORDER BY account_id",
                (AccountStatus(status).value,),
            )
        return [self._row_to_account(row) for row in cur.fetchall()]

    def set_account_status(self, account_id, status, message=_UNSET, last_full_sync_at=None):
        """Update account status; ``message`` is left alone unless passed explicitly."""
        assignments = ["status = ?", "updated_at = ?"]
        params = [AccountStatus(status).value, int(time.time())]
        if message is not _UNSET:
            assignments.append("status_message = ?")
            params.append(message)
        if last_full_sync_at is not None:
            assignments.append("last_full_sync_at = ?")
            params.append(int(last_full_sync_at))
        params.append(account_id)
        conn = self.db.conn
        cur = conn.execute(f"UPDATE accounts SET {', '.join(assignments)} WHERE account_id = ?", tuple(params))
        conn.commit()
        return cur.rowcount == 1

    def delete_account(self, account_id):
        """Remove an account together with its sync state."""
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM sync_state WHERE account_id = ?", (account_id,))
            conn.execute("DELETE FROM accounts WHERE account_id = ?", (account_id,))

    def get_sync_state(self, account_id, scope):
        row = self.db.conn.execute(
            "SELECT * FROM sync_state WHERE account_id = ? AND scope = ?",
            (account_id, str(scope)),
        ).fetchone()
        return self._row_to_state(row) if row else None

    def list_sync_states(self, account_id, prefix=None):
        if prefix:
            cur = self.db.conn.execute(
                "SELECT * FROM sync_state WHERE account_id = ? AND scope LIKE ? ORDER BY scope",
                (account_id, f"{prefix}%"),
            )
        else:
            cur = self.db.conn.execute(
                "SELECT * FROM sync_state WHERE account_id = ? ORDER BY scope",
                (account_id,),
            )
        return [self._row_to_state(row) for row in cur.fetchall()]

    def try_acquire(self, account_id, scope, owner, ttl=SYNC_LEASE_TTL_SEC):
        """Atomically claim the scope for ``owner``.

        Succeeds only when no unexpired lease is held, so two concurrent callers
        can never both move the same scope to ``in_progress``.
        """
        now = int(time.time())
        scope = str(scope)
        with self.db.transaction() as conn:
            conn.execute(
                """INSERT OR IGNORE INTO sync_state (account_id, scope, status, updated_at)
                   VALUES (?, ?, ?, ?)""",
                (account_id, scope, SyncStatus.PENDING.value, now),
            )
            cur = conn.execute(
                """UPDATE sync_state
                   SET status = ?, lease_owner = ?, lease_expires_at = ?, error_message = NULL, updated_at = ?
                   WHERE account_id = ? AND scope = ?
                     AND (status != ? OR lease_expires_at IS NULL OR lease_expires_at < ?)""",
                (
                    SyncStatus.IN_PROGRESS.value,
                    owner,
                    now + int(ttl),
                    now,
                    account_id,
                    scope,
                    SyncStatus.IN_PROGRESS.value,
                    now,
                ),
            )
            acquired = cur.rowcount == 1
        if not acquired:
            logger.info("Sync lease for %s/%s is held by another caller", account_id, scope)
        return acquired

    def complete(self, account_id, scope, owner, status, cursor=_UNSET, error_message=None):
        """Record the outcome of a sync and release the lease held by ``owner``.

        The cursor is only written when passed explicitly. Returns False when the
        lease was lost (expired and taken over), in which case nothing is written.
        """
        now = int(time.time())
        assignments = [
            "status = ?",
            "error_message = ?",
            "last_sync_at = ?",
            "lease_owner = NULL",
            "lease_expires_at = NULL",
            "updated_at = ?",
        ]
        params = [SyncStatus(status).value, error_message, now, now]
        if cursor is not _UNSET:
            assignments.append("cursor = ?")
            params.append(cursor)
        params.extend([account_id, str(scope), owner])
        with self.db.transaction() as conn:
            cur = conn.execute(
                f"""UPDATE sync_state SET {', '.join(assignments)}
                    WHERE account_id = ? AND scope = ? AND lease_owner = ?""",
                tuple(params),
            )
            written = cur.rowcount == 1
        if not written:
            logger.warning("Lost sync lease for %s/%s before completion; result discarded", account_id, scope)
        return written

    def reset_cursor(self, account_id, scope):
        """Forget the stored cursor so the next sync enumerates from scratch."""
        conn = self.db.conn
        conn.execute(
            "UPDATE sync_state SET cursor = NULL, updated_at = ? WHERE account_id = ? AND scope = ?",
            (int(time.time()), account_id, str(scope)),
        )
        conn.commit()
