import logging

from mirrorsync.constants import ATTACHMENT_CONTENT_MAX_BYTES
from mirrorsync.domain.mapping import normalize_attachment
from mirrorsync.errors import ItemReconciliationError

logger = logging.getLogger(__name__)


class AttachmentSyncService:
    """Mirrors attachment metadata, and content bytes on request.

    Content is fetched only when asked for and when the attachment size is
    within ``max_content_bytes``; larger attachments are tracked by metadata.
    """

    def __init__(self, remote, mirror_store, max_content_bytes=ATTACHMENT_CONTENT_MAX_BYTES):
        self.remote = remote
        self.mirror = mirror_store
        self.max_content_bytes = int(max_content_bytes)

    def sync_message_attachments(self, account_id, message_id, download_content=False):
        """Store attachments not yet mirrored for a message; returns how many were added."""
        stored = 0
        for item in self.remote.list_attachments(account_id, message_id):
            try:
                fields = normalize_attachment(item)
            except ItemReconciliationError as exc:
                logger.warning("Skipping attachment of message %s: %s", message_id, exc)
                continue
            attachment_id = item["id"]
            if self.mirror.has_attachment(account_id, message_id, attachment_id):
                continue

            content = None
            if download_content:
                if fields["size"] <= self.max_content_bytes:
                    payload = self.remote.get_attachment(account_id, message_id, attachment_id)
                    content = payload.get("contentBytes")
                else:
                    logger.info(
                        "Attachment %s of message %s is %d bytes; storing metadata only",
                        attachment_id,
                        message_id,
                        fields["size"],
                    )

            if self.mirror.upsert_attachment(account_id, message_id, attachment_id, fields, content_base64=content):
                stored += 1
        return stored
