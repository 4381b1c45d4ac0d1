"""Project-wide error types."""


class ProjectError(Exception):
    """Base for all mirrorsync errors."""


class ValidationError(ProjectError):
    """Invalid input data."""


class AccountStateError(ProjectError):
    """Account is missing or cannot be synced in its current state."""


class ExternalServiceError(ProjectError):
    """Third-party API or service failure."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class TransientTransportError(ExternalServiceError):
    """Network failure, 5xx or throttling; safe to retry later."""

    def __init__(self, message, status_code=None, retry_after=None):
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class RemoteNotFoundError(ExternalServiceError):
    """The remote resource does not exist (404)."""


class DeltaExpiredError(ExternalServiceError):
    """The delta cursor is no longer accepted by the provider (410)."""


class AuthorizationError(ExternalServiceError):
    """Credentials were rejected; retrying will not help."""


class ReauthRequiredError(AuthorizationError):
    """No usable token for the account; the user has to reconnect it."""


class SubscriptionLifecycleError(ExternalServiceError):
    """Creating, renewing or deleting a webhook subscription failed."""


class ItemReconciliationError(ProjectError):
    """A single delta item could not be mapped into the mirror."""


class SyncInProgressError(ProjectError):
    """Another caller holds the sync lease for the scope."""


__all__ = [
    "AccountStateError",
    "AuthorizationError",
    "DeltaExpiredError",
    "ExternalServiceError",
    "ItemReconciliationError",
    "ProjectError",
    "ReauthRequiredError",
    "RemoteNotFoundError",
    "SubscriptionLifecycleError",
    "SyncInProgressError",
    "TransientTransportError",
    "ValidationError",
]
