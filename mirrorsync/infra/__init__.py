"""Infrastructure modules for mirrorsync."""

from . import config_store, database, graph_client, mirror_store, state_store, subscription_store, token_provider

__all__ = [
    "config_store",
    "database",
    "graph_client",
    "mirror_store",
    "state_store",
    "subscription_store",
    "token_provider",
]
