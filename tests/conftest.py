import pytest

from mirrorsync.domain.models import DeltaPage
from mirrorsync.infra.database import Database
from mirrorsync.infra.mirror_store import MirrorStore
from mirrorsync.infra.state_store import SyncStateStore
from mirrorsync.infra.subscription_store import SubscriptionStore
from mirrorsync.services.delta_sync import DeltaSyncEngine
from mirrorsync.services.orchestrator import SyncOrchestrator

ACCOUNT_ID = "acct-1"


class FakeRemote:
    """Remote API stand-in serving scripted pages keyed by (scope, cursor)."""

    def __init__(self):
        self.pages = {}
        self.calls = []
        self.messages = {}
        self.attachments = {}
        self.attachment_payloads = {}
        self.attachment_fetches = []

    def add_page(self, scope, cursor=None, items=(), removed_ids=(), next_link=None, delta_link=None):
        self.pages[(scope, cursor)] = DeltaPage(
            items=list(items),
            removed_ids=list(removed_ids),
            next_link=next_link,
            delta_link=delta_link,
        )

    def fail_page(self, scope, cursor, exc):
        self.pages[(scope, cursor)] = exc

    def list_or_delta(self, account_id, scope, cursor=None):
        key = (str(scope), cursor)
        self.calls.append(key)
        response = self.pages[key]
        if isinstance(response, Exception):
            raise response
        return response

    def get_one(self, account_id, kind, remote_id):
        return self.messages[remote_id]

    def list_attachments(self, account_id, message_id):
        return list(self.attachments.get(message_id, []))

    def get_attachment(self, account_id, message_id, attachment_id):
        self.attachment_fetches.append((message_id, attachment_id))
        return self.attachment_payloads[attachment_id]


def message_item(remote_id, subject="Hello", **extra):
    item = {
        "id": remote_id,
        "subject": subject,
        "receivedDateTime": "2026-01-05T09:00:00Z",
        "isRead": False,
        "body": {"contentType": "text", "content": f"body of {remote_id}"},
    }
    item.update(extra)
    return item


def folder_item(remote_id, name, total=0):
    return {"id": remote_id, "displayName": name, "totalItemCount": total, "unreadItemCount": 0}


@pytest.fixture
def database(tmp_path):
    db = Database(str(tmp_path / "mirror.db"))
    yield db
    db.close()


@pytest.fixture
def state_store(database):
    store = SyncStateStore(database)
    store.upsert_account(ACCOUNT_ID, email="user@example.com")
    return store


@pytest.fixture
def mirror_store(database):
    return MirrorStore(database)


@pytest.fixture
def subscription_store(database):
    return SubscriptionStore(database)


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def engine(remote, state_store, mirror_store):
    return DeltaSyncEngine(remote, state_store, mirror_store)


@pytest.fixture
def orchestrator(engine, state_store, mirror_store):
    return SyncOrchestrator(engine, state_store, mirror_store)
