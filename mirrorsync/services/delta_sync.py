import logging
import uuid

from mirrorsync.constants import MAX_DELTA_PAGES, REAUTH_REQUIRED_MESSAGE, SYNC_LEASE_TTL_SEC
from mirrorsync.domain import mapping, scopes
from mirrorsync.domain.models import SyncResult, SyncStatus, UpsertOutcome
from mirrorsync.errors import (
    AuthorizationError,
    DeltaExpiredError,
    ExternalServiceError,
    ItemReconciliationError,
    TransientTransportError,
)
from mirrorsync.services.resources import adapter_for

logger = logging.getLogger(__name__)

MAX_STORED_ERROR_CHARS = 2000


class DeltaSyncEngine:
    """Reconciles one resource scope of one account with the remote provider.

    A run first claims the scope lease; a caller that loses the race gets an
    ``already_in_progress`` result and nothing is written. The stored cursor is
    replaced only when the run drained every page up to a final delta link
    without a remote failure. Items that fail to map are recorded as errors but
    do not hold the cursor back. After a remote failure the previous cursor
    stays and the next run replays from there (mirror writes are idempotent).
    """

    def __init__(
        self,
        remote,
        state_store,
        mirror_store,
        attachment_service=None,
        default_params=None,
        max_pages=MAX_DELTA_PAGES,
        lease_ttl_sec=SYNC_LEASE_TTL_SEC,
    ):
        self.remote = remote
        self.state_store = state_store
        self.mirror = mirror_store
        self.attachment_service = attachment_service
        self.default_params = dict(default_params or {})
        self.max_pages = max(1, int(max_pages or 1))
        self.lease_ttl_sec = lease_ttl_sec

    def sync_resource(self, account_id, scope, params=None):
        scope = scope if isinstance(scope, scopes.ResourceScope) else scopes.parse_scope(scope)
        key = str(scope)
        params = {**self.default_params, **(params or {})}
        result = SyncResult(scope=key)

        owner = uuid.uuid4().hex
        if not self.state_store.try_acquire(account_id, key, owner, ttl=self.lease_ttl_sec):
            result.already_in_progress = True
            result.status = SyncStatus.IN_PROGRESS
            return result

        state = self.state_store.get_sync_state(account_id, key)
        cursor = state.cursor if state else None
        logger.info("Sync %s/%s started (%s)", account_id, key, "delta" if cursor else "full enumeration")

        try:
            try:
                new_cursor = self._drain(account_id, scope, cursor, result, params)
            except DeltaExpiredError:
                if not cursor:
                    raise
                logger.warning("Delta cursor for %s/%s expired; restarting with full enumeration", account_id, key)
                self.state_store.reset_cursor(account_id, key)
                cursor = None
                new_cursor = self._drain(account_id, scope, None, result, params)
        except AuthorizationError:
            result.status = SyncStatus.ERROR
            result.errors.append(REAUTH_REQUIRED_MESSAGE)
            self.state_store.complete(
                account_id, key, owner, SyncStatus.ERROR, error_message=REAUTH_REQUIRED_MESSAGE
            )
            logger.warning("Sync %s/%s halted: %s", account_id, key, REAUTH_REQUIRED_MESSAGE)
            raise
        except ExternalServiceError as exc:
            self._record_remote_failure(result, exc)
            return self._finish(account_id, key, owner, result, cursor_update=None)
        except Exception as exc:
            result.status = SyncStatus.ERROR
            self.state_store.complete(account_id, key, owner, SyncStatus.ERROR, error_message=str(exc))
            raise

        return self._finish(account_id, key, owner, result, cursor_update=new_cursor, previous_cursor=cursor)

    @staticmethod
    def _record_remote_failure(result, exc, prefix=""):
        result.errors.append(f"{prefix}{exc}")
        result.remote_failed = True
        if isinstance(exc, TransientTransportError):
            result.retryable = True
            result.retry_after = exc.retry_after

    def _finish(self, account_id, key, owner, result, cursor_update, previous_cursor=None):
        # Item errors do not hold the cursor back; a remote failure does.
        extra = {}
        if cursor_update and not result.remote_failed:
            extra["cursor"] = cursor_update
        if result.errors:
            result.status = SyncStatus.ERROR
            message = "; ".join(result.errors)[:MAX_STORED_ERROR_CHARS]
            written = self.state_store.complete(
                account_id, key, owner, SyncStatus.ERROR, error_message=message, **extra
            )
            logger.warning(
                "Sync %s/%s finished with %d error(s); cursor %s",
                account_id,
                key,
                len(result.errors),
                "advanced" if extra else "kept",
            )
        else:
            result.status = SyncStatus.COMPLETED
            written = self.state_store.complete(account_id, key, owner, SyncStatus.COMPLETED, **extra)
            logger.info(
                "Sync %s/%s completed: %d synced, %d created, %d updated, %d deleted",
                account_id,
                key,
                result.synced,
                result.created,
                result.updated,
                result.deleted,
            )
        result.cursor_advanced = bool(written and extra and cursor_update != previous_cursor)
        if not written:
            result.status = SyncStatus.ERROR
            result.errors.append("sync lease lost before completion")
        return result

    def _drain(self, account_id, scope, cursor, result, params):
        """Follow page links until the provider hands out a delta link."""
        adapter = adapter_for(scope)
        seen_links = set()
        observed = set()
        link = cursor
        pages = 0
        while True:
            pages += 1
            if pages > self.max_pages:
                raise ExternalServiceError(f"Delta pagination exceeded {self.max_pages} pages.")
            page = self.remote.list_or_delta(account_id, scope, cursor=link)
            self._apply_page(account_id, scope, adapter, page, result, params, observed)
            if not page.next_link:
                break
            if page.next_link in seen_links or page.next_link == link:
                raise ExternalServiceError("Pagination cycle detected.")
            seen_links.add(page.next_link)
            link = page.next_link

        if adapter.snapshot:
            self._prune_unobserved(account_id, adapter, observed, result)
        elif not page.delta_link:
            logger.warning("Sync %s/%s ended without a delta link", account_id, scope)
        return page.delta_link

    @staticmethod
    def _collapse(page, result):
        """Order entries by remote id; a repeated id keeps only its last occurrence."""
        entries = {}
        for item in page.items:
            remote_id = item.get("id") if isinstance(item, dict) else None
            if not isinstance(remote_id, str) or not remote_id:
                result.errors.append("<unknown>: item is missing its id")
                continue
            entries.pop(remote_id, None)
            entries[remote_id] = item
        for remote_id in page.removed_ids:
            entries.pop(remote_id, None)
            entries[remote_id] = {"id": remote_id, "@removed": {"reason": "deleted"}}
        return entries

    def _apply_page(self, account_id, scope, adapter, page, result, params, observed):
        for remote_id, item in self._collapse(page, result).items():
            observed.add(remote_id)
            try:
                if mapping.is_removed(adapter.entity_type, item):
                    self._remove(account_id, scope, adapter, remote_id, item, result)
                    continue
                fields = self._normalize(adapter, item, scope)
                parent_key = adapter.parent_key(scope, item)
                outcome = self.mirror.upsert(account_id, adapter.entity_type, remote_id, fields, parent_key=parent_key)
                result.record(outcome)
                if outcome != UpsertOutcome.UNCHANGED:
                    self._sync_attachments(account_id, scope, remote_id, fields, result, params)
            except ItemReconciliationError as exc:
                logger.warning("Skipping item %s in %s/%s: %s", remote_id, account_id, scope, exc)
                result.errors.append(f"{remote_id}: {exc}")

    @staticmethod
    def _normalize(adapter, item, scope):
        try:
            return adapter.normalize(item, scope)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise ItemReconciliationError(f"Malformed payload: {exc}") from exc

    def _remove(self, account_id, scope, adapter, remote_id, item, result):
        parent_key = adapter.parent_key(scope, item)
        if parent_key is None:
            parent_key = self.mirror.find_parent_key(account_id, adapter.entity_type, remote_id)
            if parent_key is None:
                return
        if self.mirror.soft_delete(account_id, adapter.entity_type, remote_id, parent_key=parent_key):
            result.deleted += 1

    def _sync_attachments(self, account_id, scope, remote_id, fields, result, params):
        if scope.kind != scopes.MESSAGES or self.attachment_service is None:
            return
        if not params.get("attachments") or not fields.get("has_attachments"):
            return
        try:
            self.attachment_service.sync_message_attachments(
                account_id,
                remote_id,
                download_content=bool(params.get("download_content")),
            )
        except AuthorizationError:
            raise
        except ExternalServiceError as exc:
            self._record_remote_failure(result, exc, prefix=f"{remote_id}: attachments: ")

    def _prune_unobserved(self, account_id, adapter, observed, result):
        for entity in self.mirror.list_entities(account_id, adapter.entity_type):
            if entity["remoteId"] in observed:
                continue
            if self.mirror.soft_delete(
                account_id, adapter.entity_type, entity["remoteId"], parent_key=entity["parentKey"]
            ):
                result.deleted += 1
