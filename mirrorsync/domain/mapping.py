"""Normalize Graph payloads into mirror-store fields."""

from mirrorsync.constants import FOLDER_TYPES
from mirrorsync.errors import ItemReconciliationError

FOLDER = "folder"
MESSAGE = "message"
EVENT = "event"
CHANNEL = "channel"
CHANNEL_MESSAGE = "channel_message"
CONTACT = "contact"

EVENT_STATUS_BY_SHOW_AS = {
    "free": "tentative",
    "tentative": "tentative",
    "busy": "confirmed",
    "oof": "confirmed",
    "workingElsewhere": "confirmed",
}
RESPONSE_STATUSES = {"none", "organizer", "tentativelyAccepted", "accepted", "declined", "notResponded"}
DEFAULT_REMINDER_MINUTES = 15


def folder_type_for(display_name):
    return FOLDER_TYPES.get((display_name or "").strip().lower(), "custom")


def require_id(item):
    if not isinstance(item, dict):
        raise ItemReconciliationError(f"Expected an object, got {type(item).__name__}.")
    remote_id = item.get("id")
    if not isinstance(remote_id, str) or not remote_id.strip():
        raise ItemReconciliationError("Item is missing its id.")
    return remote_id


def is_removed(entity_type, item):
    if not isinstance(item, dict):
        return False
    if "@removed" in item:
        return True
    if entity_type == EVENT and item.get("isCancelled"):
        return True
    if entity_type == CHANNEL_MESSAGE and item.get("deletedDateTime"):
        return True
    return False


def _address(entry):
    email = (entry or {}).get("emailAddress") or {}
    return {"name": email.get("name"), "address": email.get("address")}


def _addresses(entries):
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise ItemReconciliationError("Recipient list must be an array.")
    return [_address(entry) for entry in entries if isinstance(entry, dict)]


def _body_parts(body, fallback=None):
    body = body or {}
    content_type = (body.get("contentType") or "text").lower()
    content = body.get("content")
    if content_type == "html":
        return content, fallback, content_type
    return None, content if content is not None else fallback, content_type


def normalize_folder(item):
    require_id(item)
    display_name = item.get("displayName")
    if not display_name:
        raise ItemReconciliationError("Folder is missing displayName.")
    return {
        "display_name": display_name,
        "folder_type": folder_type_for(display_name),
        "parent_remote_id": item.get("parentFolderId"),
        "unread_count": int(item.get("unreadItemCount") or 0),
        "total_count": int(item.get("totalItemCount") or 0),
        "child_folder_count": int(item.get("childFolderCount") or 0),
        "is_hidden": bool(item.get("isHidden")),
    }


def normalize_message(item, folder_id=None):
    require_id(item)
    body_html, body_text, content_type = _body_parts(item.get("body"), item.get("bodyPreview"))
    flag = item.get("flag") or {}
    parent_folder_id = item.get("parentFolderId") or folder_id
    if not parent_folder_id:
        raise ItemReconciliationError("Message has no folder membership.")
    return {
        "folder_remote_id": parent_folder_id,
        "conversation_id": item.get("conversationId"),
        "internet_message_id": item.get("internetMessageId"),
        "subject": item.get("subject") or "(No Subject)",
        "preview": item.get("bodyPreview"),
        "body_html": body_html,
        "body_text": body_text,
        "body_content_type": content_type,
        "from": _address(item.get("from")) if item.get("from") else None,
        "to_recipients": _addresses(item.get("toRecipients")),
        "cc_recipients": _addresses(item.get("ccRecipients")),
        "bcc_recipients": _addresses(item.get("bccRecipients")),
        "reply_to": _addresses(item.get("replyTo")),
        "sent_at": item.get("sentDateTime"),
        "received_at": item.get("receivedDateTime"),
        "has_attachments": bool(item.get("hasAttachments")),
        "importance": (item.get("importance") or "normal").lower(),
        "is_read": bool(item.get("isRead")),
        "is_draft": bool(item.get("isDraft")),
        "is_flagged": flag.get("flagStatus") == "flagged",
    }


def normalize_event(item):
    require_id(item)
    start = item.get("start") or {}
    end = item.get("end") or {}
    if not start.get("dateTime") or not end.get("dateTime"):
        raise ItemReconciliationError("Event is missing its time range.")
    body_html, body_text, _ = _body_parts(item.get("body"), item.get("bodyPreview"))
    response = (item.get("responseStatus") or {}).get("response") or "none"
    organizer = _address(item.get("organizer")) if item.get("organizer") else {"name": None, "address": None}
    attendees = []
    for attendee in item.get("attendees") or []:
        if not isinstance(attendee, dict):
            continue
        email = _address(attendee)
        attendees.append(
            {
                "name": email["name"],
                "email": email["address"],
                "status": (attendee.get("status") or {}).get("response") or "none",
            }
        )
    reminder = item.get("reminderMinutesBeforeStart")
    return {
        "subject": item.get("subject") or "(No Subject)",
        "body_html": body_html,
        "body_text": body_text,
        "location": (item.get("location") or {}).get("displayName"),
        "start_time": start["dateTime"],
        "start_time_zone": start.get("timeZone"),
        "end_time": end["dateTime"],
        "end_time_zone": end.get("timeZone"),
        "is_all_day": bool(item.get("isAllDay")),
        "is_recurring": bool(item.get("recurrence")),
        "recurrence": item.get("recurrence"),
        "is_online_meeting": bool(item.get("isOnlineMeeting")),
        "meeting_url": item.get("onlineMeetingUrl"),
        "organizer_name": organizer["name"],
        "organizer_email": organizer["address"],
        "attendees": attendees,
        "status": EVENT_STATUS_BY_SHOW_AS.get(item.get("showAs"), "confirmed"),
        "response_status": response if response in RESPONSE_STATUSES else "none",
        "reminder_minutes": DEFAULT_REMINDER_MINUTES if reminder is None else int(reminder),
        "categories": list(item.get("categories") or []),
        "importance": (item.get("importance") or "normal").lower(),
        "sensitivity": (item.get("sensitivity") or "normal").lower(),
    }


def normalize_channel(item):
    require_id(item)
    team_id = item.get("teamId")
    if not team_id:
        raise ItemReconciliationError("Channel is missing its team id.")
    return {
        "team_id": team_id,
        "team_name": item.get("teamName"),
        "display_name": item.get("displayName") or "",
        "description": item.get("description"),
        "membership_type": item.get("membershipType"),
    }


def normalize_channel_message(item):
    require_id(item)
    if not item.get("createdDateTime"):
        raise ItemReconciliationError("Channel message is missing createdDateTime.")
    body_html, body_text, _ = _body_parts(item.get("body"))
    user = ((item.get("from") or {}).get("user")) or {}
    return {
        "reply_to_remote_id": item.get("replyToId"),
        "body_html": body_html,
        "body_text": body_text,
        "from_name": user.get("displayName"),
        "from_email": user.get("userPrincipalName"),
        "importance": (item.get("importance") or "normal").lower(),
        "reactions": list(item.get("reactions") or []),
        "attachments": list(item.get("attachments") or []),
        "mentions": list(item.get("mentions") or []),
        "created_at": item["createdDateTime"],
        "last_modified_at": item.get("lastModifiedDateTime"),
    }


def _first(values):
    if values is None:
        return None
    if not isinstance(values, list):
        raise ItemReconciliationError("Expected an array.")
    return values[0] if values else None


def normalize_contact(item):
    require_id(item)
    emails = item.get("emailAddresses")
    primary = _first(emails) or {}
    business = item.get("businessAddress") or {}
    home = item.get("homeAddress") or {}
    flag = item.get("flag") or {}

    def _postal(name):
        return business.get(name) or home.get(name)

    return {
        "email": primary.get("address"),
        "display_name": item.get("displayName"),
        "first_name": item.get("givenName"),
        "last_name": item.get("surname"),
        "middle_name": item.get("middleName"),
        "nickname": item.get("nickName"),
        "company": item.get("companyName"),
        "job_title": item.get("jobTitle"),
        "department": item.get("department"),
        "office_location": item.get("officeLocation"),
        "mobile_phone": item.get("mobilePhone"),
        "home_phone": _first(item.get("homePhones")),
        "business_phone": _first(item.get("businessPhones")),
        "im_address": _first(item.get("imAddresses")),
        "street_address": _postal("street"),
        "city": _postal("city"),
        "state": _postal("state"),
        "postal_code": _postal("postalCode"),
        "country": _postal("countryOrRegion"),
        "birthday": item.get("birthday"),
        "personal_notes": item.get("personalNotes"),
        "categories": list(item.get("categories") or []),
        "is_favorite": flag.get("flagStatus") == "flagged",
    }


def normalize_attachment(item):
    require_id(item)
    return {
        "name": item.get("name"),
        "content_type": item.get("contentType"),
        "size": int(item.get("size") or 0),
        "is_inline": bool(item.get("isInline")),
    }
