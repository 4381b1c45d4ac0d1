"""Application services for mirrorsync."""

from . import attachments, delta_sync, notifications, orchestrator, resources, webhooks, worker_pool

__all__ = [
    "attachments",
    "delta_sync",
    "notifications",
    "orchestrator",
    "resources",
    "webhooks",
    "worker_pool",
]
