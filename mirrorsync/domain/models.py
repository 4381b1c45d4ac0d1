from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class AccountStatus(str, Enum):
    ACTIVE = "active"
    SYNCING = "syncing"
    ERROR = "error"
    NEEDS_REAUTH = "needs_reauth"
    DISCONNECTED = "disconnected"


class SyncStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    DELETED = "deleted"


class OverallStatus(str, Enum):
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"
    IN_PROGRESS = "in_progress"


class UpsertOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


def iso_from_epoch(value):
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class Account:
    account_id: str
    email: str | None = None
    status: AccountStatus = AccountStatus.ACTIVE
    status_message: str | None = None
    last_full_sync_at: int | None = None

    def to_dict(self):
        return {
            "accountId": self.account_id,
            "email": self.email,
            "status": self.status.value,
            "statusMessage": self.status_message,
            "lastFullSyncAt": iso_from_epoch(self.last_full_sync_at),
        }


@dataclass(frozen=True)
class SyncState:
    account_id: str
    scope: str
    cursor: str | None = None
    status: SyncStatus = SyncStatus.PENDING
    last_sync_at: int | None = None
    error_message: str | None = None
    lease_owner: str | None = None
    lease_expires_at: int | None = None

    def to_dict(self):
        return {
            "accountId": self.account_id,
            "scope": self.scope,
            "hasCursor": bool(self.cursor),
            "status": self.status.value,
            "lastSyncAt": iso_from_epoch(self.last_sync_at),
            "errorMessage": self.error_message,
        }


@dataclass(frozen=True)
class WebhookSubscription:
    subscription_id: str
    account_id: str
    resource_type: str
    resource_path: str
    change_types: tuple
    notify_url: str
    expires_at: int
    client_state: str
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    created_at: int | None = None
    renewed_at: int | None = None

    def to_dict(self):
        # client_state is a shared secret and is never echoed back.
        return {
            "subscriptionId": self.subscription_id,
            "accountId": self.account_id,
            "resourceType": self.resource_type,
            "resource": self.resource_path,
            "changeTypes": list(self.change_types),
            "notificationUrl": self.notify_url,
            "expiresAt": iso_from_epoch(self.expires_at),
            "status": self.status.value,
            "createdAt": iso_from_epoch(self.created_at),
            "renewedAt": iso_from_epoch(self.renewed_at),
        }


@dataclass
class SyncResult:
    scope: str
    synced: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    errors: list = field(default_factory=list)
    status: SyncStatus = SyncStatus.PENDING
    already_in_progress: bool = False
    cursor_advanced: bool = False
    # Set when a remote call failed; retryable marks transient failures.
    remote_failed: bool = False
    retryable: bool = False
    retry_after: int | None = None

    @property
    def ok(self):
        return self.status == SyncStatus.COMPLETED and not self.errors

    def record(self, outcome):
        self.synced += 1
        if outcome == UpsertOutcome.CREATED:
            self.created += 1
        elif outcome == UpsertOutcome.UPDATED:
            self.updated += 1

    def to_dict(self):
        return {
            "scope": self.scope,
            "status": self.status.value,
            "synced": self.synced,
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "errors": list(self.errors),
            "alreadyInProgress": self.already_in_progress,
            "cursorAdvanced": self.cursor_advanced,
        }


@dataclass
class AccountSyncResult:
    account_id: str
    status: OverallStatus = OverallStatus.COMPLETED
    started_at: float = 0.0
    completed_at: float = 0.0
    folder_result: SyncResult | None = None
    folder_results: dict = field(default_factory=dict)
    errors: list = field(default_factory=list)

    @property
    def duration(self):
        return max(0.0, self.completed_at - self.started_at)

    @property
    def total_messages(self):
        return sum(result.synced for result in self.folder_results.values())

    def to_dict(self):
        return {
            "accountId": self.account_id,
            "status": self.status.value,
            "duration": round(self.duration, 3),
            "folderSync": self.folder_result.to_dict() if self.folder_result else None,
            "messageSync": {
                "totalFolders": len(self.folder_results),
                "totalMessages": self.total_messages,
                "folderResults": {
                    folder_id: result.to_dict() for folder_id, result in self.folder_results.items()
                },
            },
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class DeltaPage:
    """One page of a list or delta query."""

    items: list = field(default_factory=list)
    removed_ids: list = field(default_factory=list)
    next_link: str | None = None
    delta_link: str | None = None


@dataclass(frozen=True)
class Notification:
    subscription_id: str
    client_state: str
    change_type: str | None = None
    resource: str | None = None
    resource_id: str | None = None
