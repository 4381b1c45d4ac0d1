import logging
import time

from mirrorsync.constants import REAUTH_REQUIRED_MESSAGE
from mirrorsync.domain import mapping, scopes
from mirrorsync.domain.models import AccountStatus, AccountSyncResult, OverallStatus, SyncStatus
from mirrorsync.errors import AccountStateError, AuthorizationError

logger = logging.getLogger(__name__)

UNSYNCABLE_STATUSES = {AccountStatus.NEEDS_REAUTH, AccountStatus.DISCONNECTED}


class SyncOrchestrator:
    """Sequences scope syncs for an account and rolls their outcomes up."""

    def __init__(self, engine, state_store, mirror_store):
        self.engine = engine
        self.state_store = state_store
        self.mirror = mirror_store

    def _require_syncable(self, account_id):
        account = self.state_store.get_account(account_id)
        if account is None:
            raise AccountStateError(f"Unknown account: {account_id}")
        if account.status in UNSYNCABLE_STATUSES:
            raise AccountStateError(f"Account {account_id} cannot be synced while {account.status.value}")
        return account

    def _mark_reauth(self, account_id):
        self.state_store.set_account_status(account_id, AccountStatus.NEEDS_REAUTH, message=REAUTH_REQUIRED_MESSAGE)
        logger.warning("Account %s needs reauthorization", account_id)

    def known_folders(self, account_id):
        """Live mirrored folders, smallest first so short folders finish early."""
        return self.mirror.list_entities(account_id, mapping.FOLDER, order_by="total_count")

    def sync_one(self, account_id, scope, params=None):
        self._require_syncable(account_id)
        try:
            return self.engine.sync_resource(account_id, scope, params=params)
        except AuthorizationError:
            self._mark_reauth(account_id)
            raise

    def full_account_sync(self, account_id, params=None):
        account = self._require_syncable(account_id)
        result = AccountSyncResult(account_id=account_id, started_at=time.time())
        self.state_store.set_account_status(account_id, AccountStatus.SYNCING)
        try:
            folder_result = self.engine.sync_resource(account_id, scopes.FOLDERS)
            result.folder_result = folder_result
            if folder_result.already_in_progress:
                result.status = OverallStatus.IN_PROGRESS
                self.state_store.set_account_status(account_id, account.status)
                return result
            if folder_result.status != SyncStatus.COMPLETED:
                result.status = OverallStatus.FAILED
                result.errors.extend(f"folders: {error}" for error in folder_result.errors)
                self.state_store.set_account_status(
                    account_id,
                    AccountStatus.ERROR,
                    message=f"Folder sync failed: {'; '.join(folder_result.errors)}",
                )
                logger.warning("Full sync of %s failed at folder enumeration", account_id)
                return result

            failed_folders = []
            for folder in self.known_folders(account_id):
                folder_id = folder["remoteId"]
                folder_sync = self.engine.sync_resource(account_id, scopes.messages_scope(folder_id), params=params)
                result.folder_results[folder_id] = folder_sync
                if folder_sync.status == SyncStatus.ERROR:
                    name = folder["fields"].get("display_name") or folder_id
                    failed_folders.append(name)
                    result.errors.extend(f"{name}: {error}" for error in folder_sync.errors)

            result.status = OverallStatus.COMPLETED_WITH_ERRORS if failed_folders else OverallStatus.COMPLETED
            message = f"Message sync failed for: {', '.join(failed_folders)}" if failed_folders else None
            self.state_store.set_account_status(
                account_id,
                AccountStatus.ACTIVE,
                message=message,
                last_full_sync_at=time.time(),
            )
            logger.info(
                "Full sync of %s %s: %d folders, %d messages",
                account_id,
                result.status.value,
                len(result.folder_results),
                result.total_messages,
            )
            return result
        except AuthorizationError:
            self._mark_reauth(account_id)
            raise
        except Exception as exc:
            self.state_store.set_account_status(account_id, AccountStatus.ERROR, message=str(exc))
            raise
        finally:
            result.completed_at = time.time()

    def sync_folders(self, account_id):
        return self.sync_one(account_id, scopes.FOLDERS)

    def sync_messages(self, account_id, folder_id=None, params=None):
        """Sync one folder, or every known folder when ``folder_id`` is omitted."""
        if folder_id:
            scope = scopes.messages_scope(folder_id)
            return {scope: self.sync_one(account_id, scope, params=params)}
        self._require_syncable(account_id)
        results = {}
        for folder in self.known_folders(account_id):
            scope = scopes.messages_scope(folder["remoteId"])
            results[scope] = self.sync_one(account_id, scope, params=params)
        return results

    def sync_calendar(self, account_id):
        return self.sync_one(account_id, scopes.CALENDAR)

    def sync_contacts(self, account_id):
        return self.sync_one(account_id, scopes.CONTACTS)

    def sync_teams(self, account_id):
        """Refresh the channel list, then pull message deltas for every live channel."""
        results = {scopes.CHANNELS: self.sync_one(account_id, scopes.CHANNELS)}
        for channel in self.mirror.list_entities(account_id, mapping.CHANNEL):
            scope = scopes.teams_scope(channel["fields"]["team_id"], channel["remoteId"])
            results[scope] = self.sync_one(account_id, scope)
        return results
