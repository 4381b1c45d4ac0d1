import logging
import threading
import time
from datetime import timezone
from email.utils import parsedate_to_datetime
from urllib.parse import quote

import requests

from mirrorsync.constants import (
    ATTACHMENT_SELECT_FIELDS,
    GRAPH_BASE,
    HTTP_BACKOFF_BASE_SEC,
    HTTP_BACKOFF_MAX_SEC,
    HTTP_CONNECT_TIMEOUT_SEC,
    HTTP_MAX_ATTEMPTS,
    HTTP_READ_TIMEOUT_SEC,
    MAX_RETRY_AFTER_SEC,
    MESSAGE_SELECT_FIELDS,
    PAGE_SIZE,
)
from mirrorsync.domain import scopes
from mirrorsync.domain.models import DeltaPage
from mirrorsync.errors import (
    AuthorizationError,
    DeltaExpiredError,
    ExternalServiceError,
    RemoteNotFoundError,
    TransientTransportError,
)

logger = logging.getLogger(__name__)

IDEMPOTENT_METHODS = {"GET", "PATCH", "DELETE", "PUT"}
RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def _segment(value):
    return quote(str(value), safe="")


class GraphClient:
    """Microsoft Graph API client.

    Every request carries a bearer token obtained from ``token_provider`` for the
    account being served; the client itself never refreshes credentials.
    """

    def __init__(
        self,
        token_provider,
        request_timeout=(HTTP_CONNECT_TIMEOUT_SEC, HTTP_READ_TIMEOUT_SEC),
        max_attempts=HTTP_MAX_ATTEMPTS,
        backoff_base_sec=HTTP_BACKOFF_BASE_SEC,
        backoff_max_sec=HTTP_BACKOFF_MAX_SEC,
        max_retry_after_sec=MAX_RETRY_AFTER_SEC,
        session=None,
    ):
        self.token_provider = token_provider
        self.request_timeout = request_timeout
        self.max_attempts = max(1, int(max_attempts or 1))
        self.backoff_base_sec = max(0.0, float(backoff_base_sec or 0))
        self.backoff_max_sec = max(0.0, float(backoff_max_sec or 0))
        self.max_retry_after_sec = max(1, int(max_retry_after_sec or 1))
        self.session = session or requests.Session()
        self._session_lock = threading.Lock()

    def _headers(self, account_id):
        token = self.token_provider.get_access_token(account_id)
        return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

    @staticmethod
    def _retry_after_to_seconds(raw_value):
        text = str(raw_value or "").strip()
        if not text:
            return None
        try:
            return max(0, int(text))
        except ValueError:
            try:
                parsed = parsedate_to_datetime(text)
            except (TypeError, ValueError, OverflowError):
                return None
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return max(0, int(parsed.timestamp() - time.time()))

    def _backoff_delay(self, attempt, retry_after=None):
        if retry_after is not None:
            return min(self.max_retry_after_sec, retry_after)
        return min(self.backoff_max_sec, self.backoff_base_sec * (2 ** (attempt - 1)))

    @staticmethod
    def _json_or_error(response, endpoint):
        try:
            payload = response.json()
        except ValueError as exc:
            raise ExternalServiceError(f"Invalid JSON response from Graph endpoint: {endpoint}") from exc
        if not isinstance(payload, dict):
            raise ExternalServiceError(f"Unexpected JSON shape from Graph endpoint: {endpoint}")
        return payload

    @staticmethod
    def _error_detail(response):
        try:
            payload = response.json()
        except ValueError:
            return (getattr(response, "text", "") or "")[:200]
        error = payload.get("error") if isinstance(payload, dict) else None
        if isinstance(error, dict):
            return error.get("message") or error.get("code") or ""
        return ""

    def _request(self, account_id, method, url, params=None, data=None):
        method = method.upper()
        retry_transport = method in IDEMPOTENT_METHODS
        attempt = 0

        while True:
            attempt += 1
            headers = self._headers(account_id)
            try:
                with self._session_lock:
                    resp = self.session.request(
                        method,
                        url,
                        headers=headers,
                        params=params,
                        json=data,
                        timeout=self.request_timeout,
                    )
            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as exc:
                if not retry_transport or attempt >= self.max_attempts:
                    raise TransientTransportError(f"{method} {url} failed: {exc}") from exc
                delay = self._backoff_delay(attempt)
                logger.warning("Graph %s transport error (%s); retry %d in %.1fs", method, exc, attempt, delay)
                time.sleep(delay)
                continue

            status = resp.status_code
            if status < 400:
                return resp

            detail = self._error_detail(resp)
            if status == 401:
                raise AuthorizationError(f"Graph rejected credentials: {detail}", status_code=status)
            if status == 404:
                raise RemoteNotFoundError(f"Graph resource not found: {url}", status_code=status)
            if status == 410:
                raise DeltaExpiredError(f"Graph delta cursor expired: {detail}", status_code=status)
            if status in RETRYABLE_STATUS:
                retry_after = self._retry_after_to_seconds((resp.headers or {}).get("Retry-After"))
                may_retry = retry_transport or status == 429
                if not may_retry or attempt >= self.max_attempts:
                    raise TransientTransportError(
                        f"Graph {method} {url} returned {status}: {detail}",
                        status_code=status,
                        retry_after=retry_after,
                    )
                delay = self._backoff_delay(attempt, retry_after)
                logger.warning("Graph %s returned %d; retry %d in %.1fs", method, status, attempt, delay)
                time.sleep(delay)
                continue
            raise ExternalServiceError(f"Graph {method} {url} returned {status}: {detail}", status_code=status)

    def _get(self, account_id, url, params=None):
        return self._json_or_error(self._request(account_id, "GET", url, params=params), url)

    def _initial_request(self, scope):
        """Endpoint and query for the first page of a scope without a cursor."""
        if scope.kind == scopes.FOLDERS:
            return f"{GRAPH_BASE}/me/mailFolders/delta", {
                "$select": "id,displayName,parentFolderId,childFolderCount,unreadItemCount,totalItemCount,isHidden",
            }
        if scope.kind == scopes.MESSAGES:
            return f"{GRAPH_BASE}/me/mailFolders/{_segment(scope.folder_id)}/messages/delta", {
                "$select": MESSAGE_SELECT_FIELDS,
            }
        if scope.kind == scopes.CALENDAR:
            # Event delta rejects $select/$filter/$orderby.
            return f"{GRAPH_BASE}/me/calendar/events/delta", None
        if scope.kind == scopes.CONTACTS:
            return f"{GRAPH_BASE}/me/contacts/delta", None
        if scope.kind == scopes.TEAMS:
            return (
                f"{GRAPH_BASE}/teams/{_segment(scope.team_id)}/channels/{_segment(scope.channel_id)}/messages/delta",
                None,
            )
        raise ValueError(f"No delta endpoint for scope: {scope}")

    def list_or_delta(self, account_id, scope, cursor=None):
        """Fetch one page for ``scope``.

        ``cursor`` is a next-page or delta link returned by an earlier page; without
        it the initial enumeration is started.
        """
        scope = scope if isinstance(scope, scopes.ResourceScope) else scopes.parse_scope(scope)
        if scope.kind == scopes.CHANNELS:
            return self._list_channels(account_id)

        if cursor:
            url, params = cursor, None
        else:
            url, params = self._initial_request(scope)
        data = self._get(account_id, url, params=params)

        raw_items = data.get("value") or []
        if not isinstance(raw_items, list):
            raise ExternalServiceError("Malformed delta payload: expected list in 'value'.")

        next_link = data.get("@odata.nextLink")
        delta_link = data.get("@odata.deltaLink")
        for name, value in (("@odata.nextLink", next_link), ("@odata.deltaLink", delta_link)):
            if value is not None and not isinstance(value, str):
                raise ExternalServiceError(f"Malformed delta payload: '{name}' must be a string.")
        # @removed markers stay inline; the engine relies on their order.
        return DeltaPage(items=list(raw_items), next_link=next_link, delta_link=delta_link)

    def _paged_values(self, account_id, url, params=None):
        values = []
        seen = set()
        while url:
            if url in seen:
                raise ExternalServiceError("Pagination cycle detected.")
            seen.add(url)
            data = self._get(account_id, url, params=params)
            values.extend(item for item in data.get("value") or [] if isinstance(item, dict))
            url = data.get("@odata.nextLink")
            params = None
        return values

    def _list_channels(self, account_id):
        """Every channel of every joined team, as a single cursorless page."""
        channels = []
        for team in self._paged_values(account_id, f"{GRAPH_BASE}/me/joinedTeams"):
            team_id = team.get("id")
            if not team_id:
                continue
            for channel in self._paged_values(account_id, f"{GRAPH_BASE}/teams/{_segment(team_id)}/channels"):
                channels.append({**channel, "teamId": team_id, "teamName": team.get("displayName")})
        return DeltaPage(items=channels)

    def get_one(self, account_id, kind, remote_id):
        if kind == scopes.MESSAGES:
            url = f"{GRAPH_BASE}/me/messages/{_segment(remote_id)}"
            return self._get(account_id, url, params={"$select": MESSAGE_SELECT_FIELDS})
        if kind == scopes.CALENDAR:
            return self._get(account_id, f"{GRAPH_BASE}/me/events/{_segment(remote_id)}")
        if kind == scopes.CONTACTS:
            return self._get(account_id, f"{GRAPH_BASE}/me/contacts/{_segment(remote_id)}")
        if kind == scopes.FOLDERS:
            return self._get(account_id, f"{GRAPH_BASE}/me/mailFolders/{_segment(remote_id)}")
        raise ValueError(f"Unsupported resource kind for lookup: {kind}")

    def list_attachments(self, account_id, message_id):
        url = f"{GRAPH_BASE}/me/messages/{_segment(message_id)}/attachments"
        return self._paged_values(account_id, url, params={"$select": ATTACHMENT_SELECT_FIELDS, "$top": str(PAGE_SIZE)})

    def get_attachment(self, account_id, message_id, attachment_id):
        url = f"{GRAPH_BASE}/me/messages/{_segment(message_id)}/attachments/{_segment(attachment_id)}"
        return self._get(account_id, url)

    def subscribe(self, account_id, resource_path, change_types, notify_url, expiration, client_state):
        payload = {
            "changeType": ",".join(change_types),
            "notificationUrl": notify_url,
            "resource": resource_path,
            "expirationDateTime": expiration,
            "clientState": client_state,
        }
        resp = self._request(account_id, "POST", f"{GRAPH_BASE}/subscriptions", data=payload)
        return self._json_or_error(resp, "/subscriptions")

    def renew(self, account_id, subscription_id, expiration):
        url = f"{GRAPH_BASE}/subscriptions/{_segment(subscription_id)}"
        resp = self._request(account_id, "PATCH", url, data={"expirationDateTime": expiration})
        return self._json_or_error(resp, url)

    def unsubscribe(self, account_id, subscription_id):
        self._request(account_id, "DELETE", f"{GRAPH_BASE}/subscriptions/{_segment(subscription_id)}")

    def close(self):
        session = getattr(self, "session", None)
        if session is not None:
            session.close()
            self.session = None
