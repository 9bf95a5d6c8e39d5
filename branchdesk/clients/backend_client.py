"""
clients/backend_client.py
-------------------------

Client for the backend-as-a-service: a GoTrue-style auth API and a
PostgREST-style table API. The client is a thin layer over the shared
:class:`~branchdesk.clients.http_client.HTTPClient`; all authorisation
decisions (row-level security) happen on the server, the client only
forwards the session's bearer token.

Two surfaces are exposed:

* ``BackendClient.auth`` (:class:`AuthClient`): password sign-in,
  session restoration and refresh, sign-out and session-change
  notifications. The session is persisted in the durable local store so
  a restarted process can restore it.
* ``BackendClient.table(name)`` (:class:`TableQuery`): select, single
  select, update and delete with equality filters.

Every non-2xx response or transport failure is raised as
:class:`BackendError` (:class:`AuthError` for auth endpoints).
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Callable, Dict, List, Optional

import httpx
from pydantic import ValidationError

from branchdesk.clients.http_client import HTTPClient
from branchdesk.core.auth import build_auth_headers, get_auth_url, get_rest_url
from branchdesk.core.config import Settings, get_settings
from branchdesk.core.lifecycle import Subscription
from branchdesk.logging_config import logger
from branchdesk.schemas.auth import Session
from branchdesk.utils.cache import LocalStore

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"

AuthStateCallback = Callable[[str, Optional[Session]], Any]


class BackendError(Exception):
    """Error reported by the backend or raised while reaching it."""

    def __init__(self, message: str, *, status_code: Optional[int] = None,
                 code: Optional[str] = None, details: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details


class AuthError(BackendError):
    """Error reported by the auth API."""


def _error_from_response(response: httpx.Response, error_cls: type = BackendError) -> BackendError:
    try:
        body = response.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        body = {}
    message = (
        body.get("message")
        or body.get("msg")
        or body.get("error_description")
        or body.get("error")
        or response.text
        or f"HTTP {response.status_code}"
    )
    code = body.get("error_code") or body.get("code") or body.get("error")
    return error_cls(
        str(message),
        status_code=response.status_code,
        code=str(code) if code is not None else None,
        details=body.get("details") or body.get("hint"),
    )


def _format_filter_value(value: Any) -> str:
    if value is None:
        raise ValueError("Equality filters do not accept None")
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class AuthClient:
    """Auth surface of the backend.

    Listeners registered with :meth:`on_auth_state_change` are called
    synchronously, in registration order, with ``(event, session)``
    whenever the session changes. ``session`` is ``None`` for
    ``SIGNED_OUT``.
    """

    def __init__(self, http_client: HTTPClient, settings: Settings, store: LocalStore) -> None:
        self._http = http_client
        self._base_url = settings.backend_url
        self._api_key = settings.backend_anon_key
        self._store = store
        self._storage_key = settings.session_cache_key
        self._session: Optional[Session] = None
        self._refresh_lock = asyncio.Lock()
        self._listeners: Dict[int, AuthStateCallback] = {}
        self._next_listener_id = 0

    @property
    def access_token(self) -> Optional[str]:
        return self._session.access_token if self._session else None

    # -----------------------------------------------------------------
    # session persistence
    # -----------------------------------------------------------------
    def _load_stored_session(self) -> Optional[Session]:
        raw = self._store.get_item(self._storage_key)
        if not raw:
            return None
        try:
            return Session.model_validate_json(raw)
        except ValidationError:
            logger.warning(json.dumps({"event": "auth_stored_session_invalid"}))
            self._store.remove_item(self._storage_key)
            return None

    def _save_session(self, session: Session) -> None:
        self._session = session
        self._store.set_item(self._storage_key, session.model_dump_json())

    def _drop_session(self) -> None:
        self._session = None
        self._store.remove_item(self._storage_key)

    # -----------------------------------------------------------------
    # notifications
    # -----------------------------------------------------------------
    def on_auth_state_change(self, callback: AuthStateCallback) -> Subscription:
        """Register ``callback`` for session changes until unsubscribed."""
        listener_id = self._next_listener_id
        self._next_listener_id += 1
        self._listeners[listener_id] = callback
        return Subscription(lambda: self._listeners.pop(listener_id, None))

    def _notify(self, event: str, session: Optional[Session]) -> None:
        for listener_id, callback in list(self._listeners.items()):
            if listener_id not in self._listeners:
                continue
            try:
                callback(event, session)
            except Exception:
                logger.error(json.dumps({"event": "auth_listener_error", "auth_event": event}), exc_info=True)

    # -----------------------------------------------------------------
    # token endpoint
    # -----------------------------------------------------------------
    async def _token_request(self, grant_type: str, payload: Dict[str, Any]) -> Session:
        url = get_auth_url(self._base_url, "token")
        try:
            response = await self._http.request(
                "POST", url,
                params={"grant_type": grant_type},
                headers=build_auth_headers(self._api_key),
                json=payload,
            )
        except (httpx.HTTPError, RuntimeError) as exc:
            raise AuthError(str(exc)) from exc
        if response.status_code != 200:
            raise _error_from_response(response, AuthError)
        data = response.json()
        if data.get("expires_at") is None and data.get("expires_in") is not None:
            data["expires_at"] = int(time.time()) + int(data["expires_in"])
        try:
            return Session.model_validate(data)
        except ValidationError as exc:
            raise AuthError("Malformed session in auth response", status_code=response.status_code) from exc

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        """Exchange credentials for a session.

        :raises AuthError: on invalid credentials or an unreachable backend
        """
        session = await self._token_request("password", {"email": email, "password": password})
        self._save_session(session)
        logger.info(json.dumps({
            "event": "auth_signed_in",
            "user_id": session.user.id if session.user else None,
        }))
        self._notify(SIGNED_IN, session)
        return session

    async def refresh_session(self) -> Session:
        """Trade the stored refresh token for a new session.

        :raises AuthError: without a refresh token or when the backend refuses it
        """
        current = self._session or self._load_stored_session()
        if current is None or not current.refresh_token:
            raise AuthError("No refresh token available")
        session = await self._token_request("refresh_token", {"refresh_token": current.refresh_token})
        self._save_session(session)
        self._notify(TOKEN_REFRESHED, session)
        return session

    async def get_session(self) -> Optional[Session]:
        """Return the current session, restoring it from the local store.

        An expired session is refreshed. If the backend rejects the
        refresh token the stored session is dropped and ``None`` is
        returned; transport failures propagate as :class:`AuthError`.
        """
        session = self._session or self._load_stored_session()
        if session is None:
            return None
        self._session = session
        if not session.is_expired():
            return session
        try:
            return await self.refresh_session()
        except AuthError as exc:
            if exc.status_code is None or exc.status_code >= 500:
                raise
            logger.warning(json.dumps({
                "event": "auth_refresh_rejected",
                "status_code": exc.status_code,
                "detail": exc.message,
            }))
            self._drop_session()
            self._notify(SIGNED_OUT, None)
            return None

    async def ensure_fresh_token(self) -> Optional[str]:
        """Return the access token for the next request, refreshing it first
        when it is about to expire.

        Concurrent callers share one refresh. A rejected refresh signs the
        client out and the request goes out with the anon key.
        """
        if self._session is None or not self._session.is_expired():
            return self.access_token
        async with self._refresh_lock:
            if self._session is not None and self._session.is_expired():
                await self.get_session()
        return self.access_token

    async def sign_out(self) -> None:
        """Revoke the session on the backend and forget it locally.

        The local session is dropped and ``SIGNED_OUT`` is emitted even
        when the revoke call fails; the failure is then raised.
        """
        session = self._session or self._load_stored_session()
        try:
            if session is not None:
                url = get_auth_url(self._base_url, "logout")
                try:
                    response = await self._http.request(
                        "POST", url, headers=build_auth_headers(self._api_key, session.access_token),
                    )
                except (httpx.HTTPError, RuntimeError) as exc:
                    raise AuthError(str(exc)) from exc
                # 401/404 mean the session is already gone server-side
                if response.is_error and response.status_code not in (401, 404):
                    raise _error_from_response(response, AuthError)
        finally:
            self._drop_session()
            self._notify(SIGNED_OUT, None)


class TableQuery:
    """Equality-filtered query on one table.

    ``eq`` returns the query itself so calls chain::

        rows = await backend.table("users").eq("branch_id", "b1").select()
    """

    def __init__(self, client: "BackendClient", table: str) -> None:
        self._client = client
        self._table = table
        self._filters: Dict[str, str] = {}

    def eq(self, column: str, value: Any) -> "TableQuery":
        self._filters[column] = f"eq.{_format_filter_value(value)}"
        return self

    def _require_filters(self, operation: str) -> None:
        if not self._filters:
            raise ValueError(f"{operation} on {self._table!r} requires at least one filter")

    async def select(self, columns: str = "*") -> List[Dict[str, Any]]:
        """Return every matching row."""
        return await self._client._execute("GET", self._table, params={"select": columns, **self._filters})

    async def single(self, columns: str = "*") -> Dict[str, Any]:
        """Return exactly one matching row.

        :raises BackendError: when zero or several rows match
        """
        return await self._client._execute(
            "GET", self._table,
            params={"select": columns, **self._filters},
            extra_headers={"Accept": "application/vnd.pgrst.object+json"},
        )

    async def update(self, values: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Update matching rows and return them as stored."""
        self._require_filters("update")
        return await self._client._execute(
            "PATCH", self._table,
            params=dict(self._filters),
            json_body=values,
            extra_headers={"Prefer": "return=representation"},
        )

    async def delete(self) -> List[Dict[str, Any]]:
        """Delete matching rows and return the deleted rows."""
        self._require_filters("delete")
        return await self._client._execute(
            "DELETE", self._table,
            params=dict(self._filters),
            extra_headers={"Prefer": "return=representation"},
        )


class BackendClient:
    """Entry point to the backend: ``auth`` plus ``table(name)``."""

    def __init__(self, http_client: HTTPClient, settings: Optional[Settings] = None,
                 store: Optional[LocalStore] = None) -> None:
        settings = settings or get_settings()
        self._http = http_client
        self._base_url = settings.backend_url
        self._api_key = settings.backend_anon_key
        self.auth = AuthClient(http_client, settings, store if store is not None else LocalStore())

    def table(self, name: str) -> TableQuery:
        return TableQuery(self, name)

    async def _execute(self, method: str, table: str, *, params: Dict[str, Any],
                       json_body: Any = None, extra_headers: Optional[Dict[str, str]] = None) -> Any:
        url = get_rest_url(self._base_url, table)
        access_token = await self.auth.ensure_fresh_token()
        headers = build_auth_headers(self._api_key, access_token)
        headers.update(extra_headers or {})
        try:
            response = await self._http.request(method, url, params=params, headers=headers, json=json_body)
        except (httpx.HTTPError, RuntimeError) as exc:
            raise BackendError(str(exc)) from exc
        if response.is_error:
            raise _error_from_response(response)
        if response.status_code == 204 or not response.content:
            return []
        return response.json()
