"""Domain models and payload mapping."""

from . import mapping, models, scopes

__all__ = ["mapping", "models", "scopes"]
