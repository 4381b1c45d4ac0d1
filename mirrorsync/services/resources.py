"""How each resource scope maps onto mirror-store entities."""

from dataclasses import dataclass
from typing import Callable

from mirrorsync.domain import mapping, scopes


@dataclass(frozen=True)
class ResourceAdapter:
    entity_type: str
    normalize: Callable
    parent_key: Callable
    # Snapshot resources have no delta query: each run sees the full set.
    snapshot: bool = False


def _scope_parent(scope, _item):
    return scope.parent_key


def _channel_parent(_scope, item):
    return item.get("teamId") or None


ADAPTERS = {
    scopes.FOLDERS: ResourceAdapter(
        entity_type=mapping.FOLDER,
        normalize=lambda item, scope: mapping.normalize_folder(item),
        parent_key=_scope_parent,
    ),
    scopes.MESSAGES: ResourceAdapter(
        entity_type=mapping.MESSAGE,
        normalize=lambda item, scope: mapping.normalize_message(item, folder_id=scope.folder_id),
        parent_key=_scope_parent,
    ),
    scopes.CALENDAR: ResourceAdapter(
        entity_type=mapping.EVENT,
        normalize=lambda item, scope: mapping.normalize_event(item),
        parent_key=_scope_parent,
    ),
    scopes.CONTACTS: ResourceAdapter(
        entity_type=mapping.CONTACT,
        normalize=lambda item, scope: mapping.normalize_contact(item),
        parent_key=_scope_parent,
    ),
    scopes.CHANNELS: ResourceAdapter(
        entity_type=mapping.CHANNEL,
        normalize=lambda item, scope: mapping.normalize_channel(item),
        parent_key=_channel_parent,
        snapshot=True,
    ),
    scopes.TEAMS: ResourceAdapter(
        entity_type=mapping.CHANNEL_MESSAGE,
        normalize=lambda item, scope: mapping.normalize_channel_message(item),
        parent_key=_scope_parent,
    ),
}


def adapter_for(scope):
    return ADAPTERS[scope.kind]
