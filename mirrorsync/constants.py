APP_NAME = "mirrorsync"
GRAPH_BASE = "https://graph.microsoft.com/v1.0"
AUTHORITY_BASE = "https://login.microsoftonline.com"
DEFAULT_TENANT = "common"
SCOPES = [
    "Mail.ReadWrite",
    "Calendars.ReadWrite",
    "ChannelMessage.Read.All",
    "Team.ReadBasic.All",
    "Channel.ReadBasic.All",
    "User.Read",
]
HTTP_CONNECT_TIMEOUT_SEC = 10
HTTP_READ_TIMEOUT_SEC = 45
HTTP_MAX_ATTEMPTS = 3
HTTP_BACKOFF_BASE_SEC = 0.5
HTTP_BACKOFF_MAX_SEC = 8
MAX_RETRY_AFTER_SEC = 30
MAX_DELTA_PAGES = 500
PAGE_SIZE = 50

SUBSCRIPTION_LEASE_SEC = 3 * 24 * 60 * 60
EXPIRING_SOON_HORIZON_SEC = 24 * 60 * 60
DEFAULT_CHANGE_TYPES = ("created", "updated", "deleted")

TOKEN_REFRESH_MARGIN_SEC = 5 * 60
TOKEN_DEFAULT_LIFETIME_SEC = 60 * 60
TOKEN_MAX_REFRESH_FAILURES = 3

SYNC_LEASE_TTL_SEC = 30 * 60
REAUTH_REQUIRED_MESSAGE = "reauth required"

ATTACHMENT_CONTENT_MAX_BYTES = 10 * 1024 * 1024

WORKER_COUNT = 4
TASK_RETRIES = 2
TASK_BACKOFF_BASE_SEC = 1


MESSAGE_SELECT_FIELDS = (
    "id,conversationId,subject,bodyPreview,body,from,toRecipients,ccRecipients,"
    "bccRecipients,replyTo,sentDateTime,receivedDateTime,hasAttachments,importance,"
    "isRead,isDraft,flag,parentFolderId,internetMessageId"
)
ATTACHMENT_SELECT_FIELDS = "id,name,contentType,size,isInline"

FOLDER_TYPES = {
    "inbox": "inbox",
    "drafts": "drafts",
    "sent items": "sentitems",
    "sent": "sentitems",
    "deleted items": "deleteditems",
    "trash": "deleteditems",
    "archive": "archive",
    "junk email": "junkemail",
    "spam": "junkemail",
    "outbox": "outbox",
}
