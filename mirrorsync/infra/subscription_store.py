import time

from mirrorsync.domain.models import SubscriptionStatus, WebhookSubscription


class SubscriptionStore:
    """Webhook subscription records and the notification audit log."""

    def __init__(self, database):
        self.db = database

    @staticmethod
    def _row_to_subscription(row):
        return WebhookSubscription(
            subscription_id=row["subscription_id"],
            account_id=row["account_id"],
            resource_type=row["resource_type"],
            resource_path=row["resource_path"],
            change_types=tuple(part for part in (row["change_types"] or "").split(",") if part),
            notify_url=row["notify_url"],
            expires_at=row["expires_at"],
            client_state=row["client_state"],
            status=SubscriptionStatus(row["status"]),
            created_at=row["created_at"],
            renewed_at=row["renewed_at"],
        )

    def save(self, subscription):
        conn = self.db.conn
        conn.execute(
            """INSERT OR REPLACE INTO webhook_subscriptions
               (subscription_id, account_id, resource_type, resource_path, change_types,
                notify_url, expires_at, client_state, status, created_at, renewed_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                subscription.subscription_id,
                subscription.account_id,
                subscription.resource_type,
                subscription.resource_path,
                ",".join(subscription.change_types),
                subscription.notify_url,
                int(subscription.expires_at),
                subscription.client_state,
                SubscriptionStatus(subscription.status).value,
                int(subscription.created_at or time.time()),
                subscription.renewed_at,
            ),
        )
        conn.commit()
        return self.get(subscription.subscription_id)

    def get(self, subscription_id):
        row = self.db.conn.execute(
            "SELECT * FROM webhook_subscriptions WHERE subscription_id = ?",
            (subscription_id,),
        ).fetchone()
        return self._row_to_subscription(row) if row else None

    def mark_renewed(self, subscription_id, expires_at, renewed_at=None):
        conn = self.db.conn
        conn.execute(
            """UPDATE webhook_subscriptions SET expires_at = ?, renewed_at = ?, status = ?
               WHERE subscription_id = ?""",
            (int(expires_at), int(renewed_at or time.time()), SubscriptionStatus.ACTIVE.value, subscription_id),
        )
        conn.commit()

    def set_status(self, subscription_id, status):
        conn = self.db.conn
        cur = conn.execute(
            "UPDATE webhook_subscriptions SET status = ? WHERE subscription_id = ?",
            (SubscriptionStatus(status).value, subscription_id),
        )
        conn.commit()
        return cur.rowcount == 1

    def list_for_account(self, account_id, status=SubscriptionStatus.ACTIVE):
        cur = self.db.conn.execute(
            """SELECT * FROM webhook_subscriptions
               WHERE account_id = ? AND status = ?
               ORDER BY created_at DESC""",
            (account_id, SubscriptionStatus(status).value),
        )
        return [self._row_to_subscription(row) for row in cur.fetchall()]

    def list_expiring_before(self, deadline):
        cur = self.db.conn.execute(
            """SELECT * FROM webhook_subscriptions
               WHERE status = ? AND expires_at < ?
               ORDER BY expires_at""",
            (SubscriptionStatus.ACTIVE.value, int(deadline)),
        )
        return [self._row_to_subscription(row) for row in cur.fetchall()]

    def add_log(self, subscription_id, account_id, notification, outcome):
        conn = self.db.conn
        conn.execute(
            """INSERT INTO webhook_logs
               (subscription_id, account_id, change_type, resource, resource_id, outcome, received_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                subscription_id,
                account_id,
                notification.change_type,
                notification.resource,
                notification.resource_id,
                outcome,
                int(time.time()),
            ),
        )
        conn.commit()

    def list_logs(self, subscription_id=None):
        if subscription_id is None:
            cur = self.db.conn.execute("SELECT * FROM webhook_logs ORDER BY id")
        else:
            cur = self.db.conn.execute(
                "SELECT * FROM webhook_logs WHERE subscription_id = ? ORDER BY id",
                (subscription_id,),
            )
        return [dict(row) for row in cur.fetchall()]
