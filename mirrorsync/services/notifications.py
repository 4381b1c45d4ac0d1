import hmac
import logging

from mirrorsync.domain import mapping, scopes
from mirrorsync.domain.models import Notification, SubscriptionStatus
from mirrorsync.errors import RemoteNotFoundError, SyncInProgressError, TransientTransportError, ValidationError

logger = logging.getLogger(__name__)

OUTCOME_ACCEPTED = "accepted"
OUTCOME_CLIENT_STATE_MISMATCH = "client_state_mismatch"
OUTCOME_INACTIVE = "subscription_inactive"


def _resource_id(raw):
    resource_data = raw.get("resourceData")
    if isinstance(resource_data, dict) and resource_data.get("id"):
        return str(resource_data["id"])
    resource = str(raw.get("resource") or "").rstrip("/")
    if "/" in resource:
        tail = resource.rsplit("/", 1)[-1]
        # Users/{id}/Messages/{id} or me/messages('{id}')
        if "('" in tail:
            return tail.split("'")[1] or None
        return tail or None
    return None


class NotificationProcessor:
    """Accepts Graph change notifications and hands the resulting syncs to workers.

    Envelope validation, the client-state check and the audit entry happen
    inline; the sync itself runs on the worker pool so the HTTP acknowledgment
    never waits for it.
    """

    def __init__(self, subscription_store, orchestrator, worker_pool, mirror_store=None, remote=None):
        self.store = subscription_store
        self.orchestrator = orchestrator
        self.worker_pool = worker_pool
        self.mirror = mirror_store
        self.remote = remote

    @staticmethod
    def handle_validation_handshake(token):
        return token

    @staticmethod
    def parse_batch(payload):
        """Build envelopes; any invalid envelope rejects the whole batch."""
        if not isinstance(payload, dict) or not isinstance(payload.get("value"), list):
            raise ValidationError("Notification payload must contain a 'value' array.")
        notifications = []
        for raw in payload["value"]:
            if not isinstance(raw, dict) or not raw.get("subscriptionId") or not raw.get("clientState"):
                raise ValidationError("Invalid notification: missing subscriptionId or clientState.")
            notifications.append(
                Notification(
                    subscription_id=str(raw["subscriptionId"]),
                    client_state=str(raw["clientState"]),
                    change_type=raw.get("changeType"),
                    resource=raw.get("resource"),
                    resource_id=_resource_id(raw),
                )
            )
        return notifications

    def handle_notifications(self, payload):
        notifications = self.parse_batch(payload)
        for notification in notifications:
            self.process_notification(notification)
        return len(notifications)

    def process_notification(self, notification):
        """Authenticate one envelope; returns True when a sync was queued."""
        subscription = self.store.get(notification.subscription_id)
        if subscription is None:
            logger.warning("Notification for unknown subscription %s ignored", notification.subscription_id)
            return False
        if not hmac.compare_digest(
            subscription.client_state.encode("utf-8"), notification.client_state.encode("utf-8")
        ):
            self.store.add_log(
                subscription.subscription_id, subscription.account_id, notification, OUTCOME_CLIENT_STATE_MISMATCH
            )
            logger.warning("Client state mismatch for subscription %s", subscription.subscription_id)
            return False
        # Graph keeps delivering until the real expiry, even after a failed renewal.
        if subscription.status == SubscriptionStatus.DELETED:
            self.store.add_log(subscription.subscription_id, subscription.account_id, notification, OUTCOME_INACTIVE)
            logger.info(
                "Notification for %s subscription %s ignored", subscription.status.value, subscription.subscription_id
            )
            return False

        self.store.add_log(subscription.subscription_id, subscription.account_id, notification, OUTCOME_ACCEPTED)
        self.worker_pool.submit(lambda: self._trigger_sync(subscription, notification))
        return True

    def _trigger_sync(self, subscription, notification):
        scope = self.resolve_scope(subscription, notification)
        if scope is None:
            logger.info(
                "No sync scope for %s notification on %s", notification.change_type, subscription.subscription_id
            )
            return None
        result = self.orchestrator.sync_one(subscription.account_id, scope)
        # A sync that is already running may have fetched its page before this change landed.
        if result.already_in_progress:
            raise SyncInProgressError(f"Sync of {scope} for {subscription.account_id} is already running")
        if result.retryable:
            raise TransientTransportError(
                f"Sync of {scope} for {subscription.account_id} failed: {'; '.join(result.errors)}",
                retry_after=result.retry_after,
            )
        return result

    def resolve_scope(self, subscription, notification):
        if subscription.resource_type == scopes.CALENDAR:
            return scopes.CALENDAR
        if subscription.resource_type != scopes.MESSAGES:
            return None

        message_id = notification.resource_id
        if not message_id:
            return None
        folder_id = None
        if self.mirror is not None:
            folder_id = self.mirror.find_parent_key(subscription.account_id, mapping.MESSAGE, message_id)
        if folder_id is None and notification.change_type != "deleted" and self.remote is not None:
            try:
                message = self.remote.get_one(subscription.account_id, scopes.MESSAGES, message_id)
            except RemoteNotFoundError:
                return None
            folder_id = message.get("parentFolderId")
        return scopes.messages_scope(folder_id) if folder_id else None
