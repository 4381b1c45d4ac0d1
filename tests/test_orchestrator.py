import pytest

from conftest import ACCOUNT_ID, folder_item, message_item
from mirrorsync.constants import REAUTH_REQUIRED_MESSAGE
from mirrorsync.domain.models import AccountStatus, OverallStatus, SyncStatus
from mirrorsync.errors import AccountStateError, AuthorizationError, TransientTransportError


def _three_folders(remote):
    remote.add_page(
        "folders",
        None,
        items=[
            folder_item("F1", "Inbox", total=30),
            folder_item("F2", "Archive", total=5),
            folder_item("F3", "Projects", total=12),
        ],
        delta_link="folders-d1",
    )


def test_full_sync_with_one_failing_folder_completes_with_errors(remote, orchestrator, state_store):
    _three_folders(remote)
    remote.add_page("messages:F1", None, items=[message_item("m1"), message_item("m2")], delta_link="f1-d1")
    remote.add_page("messages:F2", None, items=[message_item("m3")], delta_link="f2-d1")
    remote.fail_page("messages:F3", None, TransientTransportError("service unavailable", status_code=503))

    result = orchestrator.full_account_sync(ACCOUNT_ID)

    assert result.status == OverallStatus.COMPLETED_WITH_ERRORS
    assert result.total_messages == 3
    assert set(result.folder_results) == {"F1", "F2", "F3"}
    account = state_store.get_account(ACCOUNT_ID)
    assert account.status == AccountStatus.ACTIVE
    assert account.last_full_sync_at is not None
    assert "Projects" in account.status_message
    assert state_store.get_sync_state(ACCOUNT_ID, "messages:F3").status == SyncStatus.ERROR
    assert state_store.get_sync_state(ACCOUNT_ID, "messages:F1").status == SyncStatus.COMPLETED
    assert state_store.get_sync_state(ACCOUNT_ID, "messages:F2").status == SyncStatus.COMPLETED


def test_full_sync_visits_smallest_folders_first(remote, orchestrator):
    _three_folders(remote)
    for folder_id in ("F1", "F2", "F3"):
        remote.add_page(f"messages:{folder_id}", None, delta_link=f"{folder_id}-d1")

    result = orchestrator.full_account_sync(ACCOUNT_ID)

    assert result.status == OverallStatus.COMPLETED
    message_calls = [scope for scope, _ in remote.calls if scope.startswith("messages:")]
    assert message_calls == ["messages:F2", "messages:F3", "messages:F1"]


def test_full_sync_includes_known_folders_not_in_latest_delta(remote, orchestrator):
    _three_folders(remote)
    for folder_id in ("F1", "F2", "F3"):
        remote.add_page(f"messages:{folder_id}", None, delta_link=f"{folder_id}-d1")
    orchestrator.full_account_sync(ACCOUNT_ID)

    remote.add_page("folders", "folders-d1", items=[], delta_link="folders-d2")
    for folder_id in ("F1", "F2", "F3"):
        remote.add_page(f"messages:{folder_id}", f"{folder_id}-d1", delta_link=f"{folder_id}-d1")
    result = orchestrator.full_account_sync(ACCOUNT_ID)

    assert set(result.folder_results) == {"F1", "F2", "F3"}


def test_full_sync_fails_when_folder_sync_fails(remote, orchestrator, state_store):
    remote.fail_page("folders", None, TransientTransportError("connection reset"))

    result = orchestrator.full_account_sync(ACCOUNT_ID)

    assert result.status == OverallStatus.FAILED
    assert result.folder_results == {}
    account = state_store.get_account(ACCOUNT_ID)
    assert account.status == AccountStatus.ERROR
    assert "connection reset" in account.status_message


def test_full_sync_reports_in_progress_when_folder_lease_is_held(remote, orchestrator, state_store):
    assert state_store.try_acquire(ACCOUNT_ID, "folders", "someone-else")

    result = orchestrator.full_account_sync(ACCOUNT_ID)

    assert result.status == OverallStatus.IN_PROGRESS
    assert remote.calls == []
    assert state_store.get_account(ACCOUNT_ID).status == AccountStatus.ACTIVE


def test_authorization_failure_marks_account_needs_reauth(remote, orchestrator, state_store):
    remote.fail_page("folders", None, AuthorizationError("expired", status_code=401))

    with pytest.raises(AuthorizationError):
        orchestrator.full_account_sync(ACCOUNT_ID)

    account = state_store.get_account(ACCOUNT_ID)
    assert account.status == AccountStatus.NEEDS_REAUTH
    assert account.status_message == REAUTH_REQUIRED_MESSAGE

    with pytest.raises(AccountStateError):
        orchestrator.sync_one(ACCOUNT_ID, "calendar")


def test_sync_one_rejects_unknown_account(orchestrator):
    with pytest.raises(AccountStateError):
        orchestrator.sync_one("missing", "calendar")


def test_sync_messages_without_folder_runs_every_known_folder(remote, orchestrator):
    _three_folders(remote)
    orchestrator.sync_folders(ACCOUNT_ID)
    for folder_id in ("F1", "F2", "F3"):
        remote.add_page(f"messages:{folder_id}", None, items=[message_item(f"{folder_id}-m")], delta_link="d")

    results = orchestrator.sync_messages(ACCOUNT_ID)

    assert set(results) == {"messages:F1", "messages:F2", "messages:F3"}
    assert all(result.created == 1 for result in results.values())


def test_sync_calendar_maps_events(remote, orchestrator, mirror_store):
    remote.add_page(
        "calendar",
        None,
        items=[
            {
                "id": "e1",
                "subject": "Standup",
                "start": {"dateTime": "2026-01-05T09:00:00", "timeZone": "UTC"},
                "end": {"dateTime": "2026-01-05T09:15:00", "timeZone": "UTC"},
                "showAs": "tentative",
            }
        ],
        delta_link="cal-d1",
    )

    result = orchestrator.sync_calendar(ACCOUNT_ID)

    assert result.created == 1
    fields = mirror_store.get(ACCOUNT_ID, "event", "e1")["fields"]
    assert fields["status"] == "tentative"
    assert fields["reminder_minutes"] == 15


def test_sync_contacts_uses_its_own_cursor(remote, orchestrator, state_store, mirror_store):
    remote.add_page("contacts", None, items=[{"id": "c1", "displayName": "Ada"}], delta_link="contacts-d1")
    remote.add_page("contacts", "contacts-d1", removed_ids=["c1"], delta_link="contacts-d2")

    first = orchestrator.sync_contacts(ACCOUNT_ID)
    second = orchestrator.sync_contacts(ACCOUNT_ID)

    assert (first.created, second.deleted) == (1, 1)
    assert state_store.get_sync_state(ACCOUNT_ID, "contacts").cursor == "contacts-d2"
    assert mirror_store.count(ACCOUNT_ID, "contact") == 0


def test_sync_teams_refreshes_channels_then_channel_messages(remote, orchestrator):
    remote.add_page(
        "channels",
        None,
        items=[{"id": "C1", "displayName": "General", "teamId": "T1", "teamName": "Team"}],
    )
    remote.add_page(
        "teams:T1:C1",
        None,
        items=[{"id": "cm1", "createdDateTime": "2026-01-01T00:00:00Z"}],
        delta_link="t-d1",
    )

    results = orchestrator.sync_teams(ACCOUNT_ID)

    assert list(results) == ["channels", "teams:T1:C1"]
    assert results["teams:T1:C1"].created == 1


def test_malformed_message_does_not_stop_other_folders(remote, orchestrator, state_store):
    remote.add_page(
        "folders",
        None,
        items=[folder_item("F1", "Inbox", total=1), folder_item("F2", "Archive", total=2)],
        delta_link="folders-d1",
    )
    remote.add_page("messages:F1", None, items=[message_item("bad", flag="flagged")], delta_link="f1-d1")
    remote.add_page("messages:F2", None, items=[message_item("m2")], delta_link="f2-d1")

    result = orchestrator.full_account_sync(ACCOUNT_ID)

    assert result.status == OverallStatus.COMPLETED_WITH_ERRORS
    assert ("messages:F2", None) in remote.calls
    assert result.folder_results["F2"].created == 1
    assert state_store.get_account(ACCOUNT_ID).status == AccountStatus.ACTIVE
    assert state_store.get_sync_state(ACCOUNT_ID, "messages:F1").cursor == "f1-d1"


def test_transient_failure_leaves_account_syncable(remote, orchestrator, state_store):
    remote.fail_page("calendar", None, TransientTransportError("token refresh failed", status_code=None))

    result = orchestrator.sync_calendar(ACCOUNT_ID)

    assert result.status == SyncStatus.ERROR
    assert result.retryable is True
    assert state_store.get_account(ACCOUNT_ID).status == AccountStatus.ACTIVE
