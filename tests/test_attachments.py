import pytest

from conftest import ACCOUNT_ID
from mirrorsync.services.attachments import AttachmentSyncService


@pytest.fixture
def service(remote, mirror_store):
    return AttachmentSyncService(remote, mirror_store, max_content_bytes=1024)


def _attachment(attachment_id, size):
    return {"id": attachment_id, "name": f"{attachment_id}.pdf", "contentType": "application/pdf", "size": size}


def test_content_is_downloaded_only_within_size_ceiling(service, remote, mirror_store):
    remote.attachments["m1"] = [_attachment("small", 100), _attachment("huge", 4096)]
    remote.attachment_payloads["small"] = {"id": "small", "contentBytes": "aGVsbG8="}

    stored = service.sync_message_attachments(ACCOUNT_ID, "m1", download_content=True)

    assert stored == 2
    assert remote.attachment_fetches == [("m1", "small")]
    by_id = {item["id"]: item for item in mirror_store.get_attachments(ACCOUNT_ID, "m1")}
    assert by_id["small"]["contentStored"] is True
    assert by_id["huge"]["contentStored"] is False


def test_metadata_only_without_download(service, remote, mirror_store):
    remote.attachments["m1"] = [_attachment("a1", 10)]

    assert service.sync_message_attachments(ACCOUNT_ID, "m1") == 1
    assert remote.attachment_fetches == []
    assert mirror_store.get_attachments(ACCOUNT_ID, "m1")[0]["contentStored"] is False


def test_already_mirrored_attachments_are_skipped(service, remote):
    remote.attachments["m1"] = [_attachment("a1", 10)]
    remote.attachment_payloads["a1"] = {"contentBytes": "eA=="}
    service.sync_message_attachments(ACCOUNT_ID, "m1", download_content=True)

    again = service.sync_message_attachments(ACCOUNT_ID, "m1", download_content=True)

    assert again == 0
    assert remote.attachment_fetches == [("m1", "a1")]


def test_attachment_without_id_is_skipped(service, remote, mirror_store):
    remote.attachments["m1"] = [{"name": "orphan.txt", "size": 1}, _attachment("a1", 10)]

    assert service.sync_message_attachments(ACCOUNT_ID, "m1") == 1
    assert [item["id"] for item in mirror_store.get_attachments(ACCOUNT_ID, "m1")] == ["a1"]
