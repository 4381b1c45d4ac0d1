import pytest

from conftest import ACCOUNT_ID
from mirrorsync.domain import mapping
from mirrorsync.domain.models import UpsertOutcome
from mirrorsync.infra.database import MIRROR_TABLES


def _fields(subject="Hello", is_read=False):
    return {"folder_remote_id": "F1", "subject": subject, "is_read": is_read, "received_at": "2026-01-05T09:00:00Z"}


def test_upsert_reports_created_unchanged_updated(mirror_store):
    first = mirror_store.upsert(ACCOUNT_ID, mapping.MESSAGE, "m1", _fields(), parent_key="F1")
    again = mirror_store.upsert(ACCOUNT_ID, mapping.MESSAGE, "m1", _fields(), parent_key="F1")
    changed = mirror_store.upsert(ACCOUNT_ID, mapping.MESSAGE, "m1", _fields(is_read=True), parent_key="F1")

    assert (first, again, changed) == (UpsertOutcome.CREATED, UpsertOutcome.UNCHANGED, UpsertOutcome.UPDATED)
    assert mirror_store.count(ACCOUNT_ID, mapping.MESSAGE) == 1
    assert mirror_store.get(ACCOUNT_ID, mapping.MESSAGE, "m1", parent_key="F1")["fields"]["is_read"] is True


def test_soft_delete_hides_but_keeps_row(mirror_store):
    mirror_store.upsert(ACCOUNT_ID, mapping.MESSAGE, "m1", _fields(), parent_key="F1")

    assert mirror_store.soft_delete(ACCOUNT_ID, mapping.MESSAGE, "m1", parent_key="F1") is True
    assert mirror_store.soft_delete(ACCOUNT_ID, mapping.MESSAGE, "m1", parent_key="F1") is False

    assert mirror_store.count(ACCOUNT_ID, mapping.MESSAGE) == 0
    assert mirror_store.count(ACCOUNT_ID, mapping.MESSAGE, include_deleted=True) == 1
    assert mirror_store.get(ACCOUNT_ID, mapping.MESSAGE, "m1", parent_key="F1")["isDeleted"] is True


def test_reappearing_entity_is_revived_as_update(mirror_store):
    mirror_store.upsert(ACCOUNT_ID, mapping.MESSAGE, "m1", _fields(), parent_key="F1")
    local_id = mirror_store.get(ACCOUNT_ID, mapping.MESSAGE, "m1", parent_key="F1")["localId"]
    mirror_store.soft_delete(ACCOUNT_ID, mapping.MESSAGE, "m1", parent_key="F1")

    outcome = mirror_store.upsert(ACCOUNT_ID, mapping.MESSAGE, "m1", _fields(), parent_key="F1")

    entity = mirror_store.get(ACCOUNT_ID, mapping.MESSAGE, "m1", parent_key="F1")
    assert outcome == UpsertOutcome.UPDATED
    assert entity["isDeleted"] is False
    assert entity["localId"] == local_id


def test_find_parent_key_ignores_deleted_rows(mirror_store):
    mirror_store.upsert(ACCOUNT_ID, mapping.MESSAGE, "m1", _fields(), parent_key="F1")
    mirror_store.upsert(ACCOUNT_ID, mapping.MESSAGE, "m2", _fields(), parent_key="F2")
    mirror_store.soft_delete(ACCOUNT_ID, mapping.MESSAGE, "m2", parent_key="F2")

    assert mirror_store.find_parent_key(ACCOUNT_ID, mapping.MESSAGE, "m1") == "F1"
    assert mirror_store.find_parent_key(ACCOUNT_ID, mapping.MESSAGE, "m2") is None


def test_attachments_are_stored_once(mirror_store):
    fields = {"name": "plan.pdf", "content_type": "application/pdf", "size": 10, "is_inline": False}

    assert mirror_store.upsert_attachment(ACCOUNT_ID, "m1", "a1", fields, content_base64="aGk=") is True
    assert mirror_store.upsert_attachment(ACCOUNT_ID, "m1", "a1", fields) is False

    assert mirror_store.get_attachments(ACCOUNT_ID, "m1") == [
        {
            "id": "a1",
            "name": "plan.pdf",
            "contentType": "application/pdf",
            "size": 10,
            "isInline": False,
            "contentStored": True,
        }
    ]


def test_unknown_entity_type_is_rejected(mirror_store):
    with pytest.raises(ValueError):
        mirror_store.upsert(ACCOUNT_ID, "task", "t1", {})


def test_purge_account_removes_everything(mirror_store):
    mirror_store.upsert(ACCOUNT_ID, mapping.MESSAGE, "m1", _fields(), parent_key="F1")
    mirror_store.upsert_attachment(ACCOUNT_ID, "m1", "a1", {"name": "x"})

    mirror_store.purge_account(ACCOUNT_ID)

    assert mirror_store.count(ACCOUNT_ID, mapping.MESSAGE, include_deleted=True) == 0
    assert mirror_store.get_attachments(ACCOUNT_ID, "m1") == []


@pytest.mark.parametrize("entity_type", sorted(MIRROR_TABLES))
def test_every_mirror_table_accepts_upserts(mirror_store, entity_type):
    outcome = mirror_store.upsert(ACCOUNT_ID, entity_type, "r1", {"display_name": "x"})

    assert outcome == UpsertOutcome.CREATED
    assert mirror_store.count(ACCOUNT_ID, entity_type) == 1


def test_channel_message_posted_at_column_comes_from_created_at(database, mirror_store):
    fields = mapping.normalize_channel_message(
        {"id": "cm1", "createdDateTime": "2026-01-05T09:00:00Z", "body": {"content": "hi"}}
    )

    mirror_store.upsert(ACCOUNT_ID, mapping.CHANNEL_MESSAGE, "cm1", fields, parent_key="T1:C1")

    row = database.conn.execute("SELECT posted_at, created_at FROM channel_messages WHERE remote_id = 'cm1'").fetchone()
    assert row["posted_at"] == "2026-01-05T09:00:00Z"
    assert isinstance(row["created_at"], int)


def test_contact_columns_are_filled(database, mirror_store):
    fields = mapping.normalize_contact(
        {"id": "c1", "displayName": "Ada", "emailAddresses": [{"address": "ada@example.com"}], "companyName": "ACME"}
    )

    mirror_store.upsert(ACCOUNT_ID, mapping.CONTACT, "c1", fields)

    row = database.conn.execute("SELECT display_name, email, company FROM contacts WHERE remote_id = 'c1'").fetchone()
    assert tuple(row) == ("Ada", "ada@example.com", "ACME")
