import logging
import threading
import time

import msal
import requests

from mirrorsync.constants import (
    AUTHORITY_BASE,
    DEFAULT_TENANT,
    REAUTH_REQUIRED_MESSAGE,
    SCOPES,
    TOKEN_DEFAULT_LIFETIME_SEC,
    TOKEN_MAX_REFRESH_FAILURES,
    TOKEN_REFRESH_MARGIN_SEC,
)
from mirrorsync.domain.models import AccountStatus
from mirrorsync.errors import ReauthRequiredError, TransientTransportError

logger = logging.getLogger(__name__)


class MsalTokenProvider:
    """Per-account access tokens backed by the ``account_tokens`` table.

    A token is handed out while it stays valid for longer than the refresh
    margin; otherwise it is refreshed through MSAL with the stored refresh
    token. Refreshes are serialized per account, so concurrent callers wait
    for the first refresh and reuse its result.
    """

    def __init__(
        self,
        database,
        state_store,
        client_id="",
        client_secret="",
        tenant_id=DEFAULT_TENANT,
        app=None,
        refresh_margin_sec=TOKEN_REFRESH_MARGIN_SEC,
        max_refresh_failures=TOKEN_MAX_REFRESH_FAILURES,
    ):
        self.db = database
        self.state_store = state_store
        self.client_id = client_id
        self.client_secret = client_secret
        self.tenant_id = tenant_id or DEFAULT_TENANT
        self.refresh_margin_sec = refresh_margin_sec
        self.max_refresh_failures = max(1, int(max_refresh_failures or 1))
        self._app = app
        self._locks = {}
        self._locks_guard = threading.Lock()

    @property
    def app(self):
        if self._app is None:
            self._app = msal.ConfidentialClientApplication(
                self.client_id,
                client_credential=self.client_secret or None,
                authority=f"{AUTHORITY_BASE}/{self.tenant_id}",
            )
        return self._app

    def _lock_for(self, account_id):
        with self._locks_guard:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[account_id] = lock
            return lock

    def _load(self, account_id):
        row = self.db.conn.execute(
            "SELECT * FROM account_tokens WHERE account_id = ?",
            (account_id,),
        ).fetchone()
        return dict(row) if row else None

    def _is_fresh(self, row):
        return bool(row and row["access_token"]) and row["expires_at"] - time.time() > self.refresh_margin_sec

    def store_tokens(self, account_id, access_token, refresh_token=None, expires_in=None, scopes=None):
        expires_at = int(time.time()) + int(expires_in or TOKEN_DEFAULT_LIFETIME_SEC)
        conn = self.db.conn
        conn.execute(
            """INSERT INTO account_tokens
               (account_id, access_token, refresh_token, expires_at, scopes, last_refreshed_at,
                refresh_failure_count, last_refresh_error)
               VALUES (?, ?, ?, ?, ?, ?, 0, NULL)
               ON CONFLICT(account_id) DO UPDATE SET
                   access_token = excluded.access_token,
                   refresh_token = COALESCE(excluded.refresh_token, account_tokens.refresh_token),
                   expires_at = excluded.expires_at,
                   scopes = COALESCE(excluded.scopes, account_tokens.scopes),
                   last_refreshed_at = excluded.last_refreshed_at,
                   refresh_failure_count = 0,
                   last_refresh_error = NULL""",
            (
                account_id,
                access_token,
                refresh_token,
                expires_at,
                " ".join(scopes) if scopes else None,
                int(time.time()),
            ),
        )
        conn.commit()

    def revoke_tokens(self, account_id):
        conn = self.db.conn
        conn.execute("DELETE FROM account_tokens WHERE account_id = ?", (account_id,))
        conn.commit()
        self.state_store.set_account_status(account_id, AccountStatus.DISCONNECTED, message="Tokens revoked")
        logger.info("Revoked tokens for account %s", account_id)

    def _record_failure(self, account_id, message):
        conn = self.db.conn
        conn.execute(
            """UPDATE account_tokens
               SET refresh_failure_count = refresh_failure_count + 1, last_refresh_error = ?
               WHERE account_id = ?""",
            (message, account_id),
        )
        conn.commit()
        row = self._load(account_id)
        failures = row["refresh_failure_count"] if row else self.max_refresh_failures
        logger.warning("Token refresh failed for %s (%d/%d): %s", account_id, failures, self.max_refresh_failures, message)
        if failures >= self.max_refresh_failures:
            self.state_store.set_account_status(account_id, AccountStatus.NEEDS_REAUTH, message=REAUTH_REQUIRED_MESSAGE)
            return True
        return False

    def get_access_token(self, account_id):
        row = self._load(account_id)
        if self._is_fresh(row):
            return row["access_token"]

        with self._lock_for(account_id):
            row = self._load(account_id)
            if self._is_fresh(row):
                return row["access_token"]
            if row is None or not row["refresh_token"]:
                self.state_store.set_account_status(
                    account_id, AccountStatus.NEEDS_REAUTH, message=REAUTH_REQUIRED_MESSAGE
                )
                raise ReauthRequiredError(f"No refresh token stored for account {account_id}", status_code=401)
            if row["refresh_failure_count"] >= self.max_refresh_failures:
                raise ReauthRequiredError(f"Token refresh exhausted for account {account_id}", status_code=401)
            return self._refresh(account_id, row)

    def _refresh(self, account_id, row):
        try:
            result = self.app.acquire_token_by_refresh_token(row["refresh_token"], scopes=SCOPES)
        except ValueError as exc:
            result = {"error": "invalid_request", "error_description": str(exc)}
        except requests.exceptions.RequestException as exc:
            result = {"error": "network_error", "error_description": str(exc)}
        if not result or "access_token" not in result:
            message = (result or {}).get("error_description") or (result or {}).get("error") or "unknown error"
            exhausted = self._record_failure(account_id, message)
            if exhausted:
                raise ReauthRequiredError(f"Token refresh failed for account {account_id}: {message}", status_code=401)
            if self._is_usable(row):
                return row["access_token"]
            # Below the failure limit this is a transient failure.
            raise TransientTransportError(f"Token refresh failed for account {account_id}: {message}")

        self.store_tokens(
            account_id,
            result["access_token"],
            refresh_token=result.get("refresh_token"),
            expires_in=result.get("expires_in"),
            scopes=(result.get("scope") or "").split() or None,
        )
        logger.info("Refreshed access token for account %s", account_id)
        return result["access_token"]

    @staticmethod
    def _is_usable(row):
        return bool(row and row["access_token"]) and row["expires_at"] > time.time()
