"""Microsoft Graph mailbox, calendar and Teams mirror."""

from . import api, bootstrap, constants, domain, errors, infra, paths, services

__all__ = [
    "api",
    "bootstrap",
    "constants",
    "domain",
    "errors",
    "infra",
    "paths",
    "services",
]
