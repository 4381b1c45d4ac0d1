"""Resource scope strings used as sync-state keys.

A scope names one independently synchronized resource tree for an account:

    folders                       mail folder hierarchy
    messages:<folder-id>          messages of one mail folder
    calendar                      default calendar events
    contacts                      personal contacts
    channels                      Teams channels of every joined team
    teams:<team-id>:<channel-id>  messages of one Teams channel
"""

from dataclasses import dataclass

from mirrorsync.errors import ValidationError

FOLDERS = "folders"
MESSAGES = "messages"
CALENDAR = "calendar"
CONTACTS = "contacts"
CHANNELS = "channels"
TEAMS = "teams"


@dataclass(frozen=True)
class ResourceScope:
    kind: str
    folder_id: str | None = None
    team_id: str | None = None
    channel_id: str | None = None

    def __str__(self):
        if self.kind == MESSAGES:
            return f"{MESSAGES}:{self.folder_id}"
        if self.kind == TEAMS:
            return f"{TEAMS}:{self.team_id}:{self.channel_id}"
        return self.kind

    @property
    def parent_key(self):
        """Mirror-store parent key of the entities this scope owns."""
        if self.kind == MESSAGES:
            return self.folder_id
        if self.kind == TEAMS:
            return channel_parent_key(self.team_id, self.channel_id)
        return ""


def channel_parent_key(team_id, channel_id):
    return f"{team_id}:{channel_id}"


def messages_scope(folder_id):
    return str(parse_scope(f"{MESSAGES}:{folder_id}"))


def teams_scope(team_id, channel_id):
    return str(parse_scope(f"{TEAMS}:{team_id}:{channel_id}"))


def parse_scope(value):
    text = (value or "").strip() if isinstance(value, str) else str(value or "")
    if not text:
        raise ValidationError("Resource scope is required.")
    if text in (FOLDERS, CALENDAR, CONTACTS, CHANNELS):
        return ResourceScope(kind=text)

    kind, _, rest = text.partition(":")
    if kind == MESSAGES:
        if not rest.strip():
            raise ValidationError(f"Missing folder id in scope: {text}")
        return ResourceScope(kind=MESSAGES, folder_id=rest.strip())
    if kind == TEAMS:
        team_id, _, channel_id = rest.partition(":")
        if not team_id.strip() or not channel_id.strip():
            raise ValidationError(f"Scope must look like teams:<team-id>:<channel-id>: {text}")
        return ResourceScope(kind=TEAMS, team_id=team_id.strip(), channel_id=channel_id.strip())
    raise ValidationError(f"Unknown resource scope: {text}")
