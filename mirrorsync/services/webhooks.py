import logging
import secrets
import time

from mirrorsync.constants import DEFAULT_CHANGE_TYPES, EXPIRING_SOON_HORIZON_SEC, SUBSCRIPTION_LEASE_SEC
from mirrorsync.domain import scopes
from mirrorsync.domain.models import SubscriptionStatus, WebhookSubscription, iso_from_epoch
from mirrorsync.errors import (
    AuthorizationError,
    ExternalServiceError,
    RemoteNotFoundError,
    SubscriptionLifecycleError,
    ValidationError,
)

logger = logging.getLogger(__name__)

RESOURCE_PATHS = {
    scopes.MESSAGES: "/me/messages",
    scopes.CALENDAR: "/me/calendar/events",
}


class SubscriptionManager:
    """Creates, renews and deletes Graph change-notification subscriptions."""

    def __init__(
        self,
        remote,
        subscription_store,
        notify_url="",
        lease_sec=SUBSCRIPTION_LEASE_SEC,
        clock=time.time,
    ):
        self.remote = remote
        self.store = subscription_store
        self.notify_url = notify_url
        self.lease_sec = int(lease_sec)
        self.clock = clock

    def _now(self):
        return int(self.clock())

    def _require(self, subscription_id):
        subscription = self.store.get(subscription_id)
        if subscription is None:
            raise ValidationError(f"Unknown subscription: {subscription_id}")
        return subscription

    def create_subscription(self, account_id, resource_type, notify_url=None):
        resource_path = RESOURCE_PATHS.get(resource_type)
        if resource_path is None:
            raise ValidationError(f"Unsupported subscription resource type: {resource_type}")
        notify_url = notify_url or self.notify_url
        if not notify_url:
            raise ValidationError("Notification URL is not configured.")

        client_state = secrets.token_urlsafe(32)
        now = self._now()
        expires_at = now + self.lease_sec
        try:
            payload = self.remote.subscribe(
                account_id,
                resource_path,
                DEFAULT_CHANGE_TYPES,
                notify_url,
                iso_from_epoch(expires_at),
                client_state,
            )
        except AuthorizationError:
            raise
        except ExternalServiceError as exc:
            raise SubscriptionLifecycleError(
                f"Failed to create {resource_type} subscription: {exc}", status_code=exc.status_code
            ) from exc
        subscription_id = (payload or {}).get("id")
        if not subscription_id:
            raise SubscriptionLifecycleError("Subscription response did not include an id.")

        subscription = self.store.save(
            WebhookSubscription(
                subscription_id=subscription_id,
                account_id=account_id,
                resource_type=resource_type,
                resource_path=resource_path,
                change_types=DEFAULT_CHANGE_TYPES,
                notify_url=notify_url,
                expires_at=expires_at,
                client_state=client_state,
                status=SubscriptionStatus.ACTIVE,
                created_at=now,
            )
        )
        logger.info("Created %s subscription %s for %s", resource_type, subscription_id, account_id)
        return subscription

    def renew_subscription(self, subscription_id):
        """Extend the lease; a failed renewal marks the subscription expired."""
        subscription = self._require(subscription_id)
        if subscription.status == SubscriptionStatus.DELETED:
            raise ValidationError(f"Subscription {subscription_id} was deleted.")
        now = self._now()
        expires_at = now + self.lease_sec
        try:
            self.remote.renew(subscription.account_id, subscription_id, iso_from_epoch(expires_at))
        except AuthorizationError:
            self.store.set_status(subscription_id, SubscriptionStatus.EXPIRED)
            raise
        except ExternalServiceError as exc:
            self.store.set_status(subscription_id, SubscriptionStatus.EXPIRED)
            logger.warning("Renewal of subscription %s failed: %s", subscription_id, exc)
            raise SubscriptionLifecycleError(
                f"Failed to renew subscription {subscription_id}: {exc}", status_code=exc.status_code
            ) from exc
        self.store.mark_renewed(subscription_id, expires_at, renewed_at=now)
        return self.store.get(subscription_id)

    def delete_subscription(self, subscription_id):
        """Remove the remote subscription; the local record is always marked deleted."""
        subscription = self._require(subscription_id)
        remote_error = None
        try:
            self.remote.unsubscribe(subscription.account_id, subscription_id)
        except RemoteNotFoundError:
            logger.info("Subscription %s was already gone remotely", subscription_id)
        except ExternalServiceError as exc:
            remote_error = exc
        self.store.set_status(subscription_id, SubscriptionStatus.DELETED)
        if remote_error is not None:
            raise SubscriptionLifecycleError(
                f"Failed to delete subscription {subscription_id}: {remote_error}",
                status_code=remote_error.status_code,
            ) from remote_error
        return self.store.get(subscription_id)

    def list_active(self, account_id):
        return self.store.list_for_account(account_id, SubscriptionStatus.ACTIVE)

    def list_expiring_soon(self, horizon_sec=EXPIRING_SOON_HORIZON_SEC):
        return self.store.list_expiring_before(self._now() + int(horizon_sec))

    def renew_expiring(self, horizon_sec=EXPIRING_SOON_HORIZON_SEC):
        renewed = []
        failed = []
        for subscription in self.list_expiring_soon(horizon_sec):
            try:
                self.renew_subscription(subscription.subscription_id)
            except (ExternalServiceError, ValidationError) as exc:
                failed.append(f"{subscription.subscription_id}: {exc}")
                continue
            renewed.append(subscription.subscription_id)
        if renewed or failed:
            logger.info("Subscription renewal pass: %d renewed, %d failed", len(renewed), len(failed))
        return {"renewed": renewed, "failed": failed}

    def recreate_expired(self, account_id):
        """Replace expired subscriptions of an account with fresh ones."""
        created = []
        for subscription in self.store.list_for_account(account_id, SubscriptionStatus.EXPIRED):
            try:
                replacement = self.create_subscription(
                    account_id, subscription.resource_type, notify_url=subscription.notify_url
                )
            except SubscriptionLifecycleError as exc:
                logger.warning("Could not recreate subscription %s: %s", subscription.subscription_id, exc)
                continue
            self.store.set_status(subscription.subscription_id, SubscriptionStatus.DELETED)
            created.append(replacement)
        return created
