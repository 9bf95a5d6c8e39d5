"""
core/context.py
----------------

Session/authorization context for the signed-in staff member.

:class:`SessionManager` is the single source of truth for "who is logged
in" and "what backend data follows from that": the current session, the
user's profile row and the team of users sharing the user's branch. It
is constructed once per application instance with an injected backend
client and local store, mounted for the lifetime of the application and
disposed on shutdown.

Every session change (a restored session, a sign-in, a token refresh or
a sign-out) goes through :meth:`SessionManager._handle_session`. A
session with a user starts the profile/team refresh in a background
task; a change without a user resets the manager synchronously. Each
change bumps a generation counter, and a refresh whose generation is no
longer current when its fetch resolves is discarded, so an older, slower
fetch never overwrites a newer one.

Write operations return :class:`~branchdesk.core.result.OperationResult`.
``login`` raises the backend's :class:`AuthError` and ``fetch_inventory``
always returns a list.
"""

from __future__ import annotations

import asyncio
import json
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import ValidationError

from branchdesk.clients.backend_client import AuthError, BackendError
from branchdesk.core.lifecycle import Subscription
from branchdesk.core.result import OperationResult
from branchdesk.logging_config import log_call, logger
from branchdesk.schemas.auth import Session, SessionStateResponse, UserProfile
from branchdesk.schemas.inventory import InventoryItem
from branchdesk.utils.cache import LocalStore

USERS_TABLE = "users"
SHIFTS_TABLE = "shifts"
INVENTORY_TABLE = "inventory"


class ContextState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    SESSION_KNOWN = "session_known"
    PROFILE_KNOWN = "profile_known"
    READY = "ready"
    FAILED = "failed"


class InventoryDeleteError(Exception):
    """Generic failure of an inventory delete."""

    def __init__(self, item_id: int) -> None:
        super().__init__("Ürün silinemedi")
        self.item_id = item_id


class SessionManager:
    """Tracks the session and the profile and team derived from it.

    ``backend`` must provide ``auth`` (``get_session``,
    ``on_auth_state_change``, ``sign_in_with_password``, ``sign_out``) and
    ``table(name)`` returning an equality-filtered query, as
    :class:`~branchdesk.clients.backend_client.BackendClient` does.
    """

    def __init__(self, backend: Any, store: LocalStore, *, user_cache_key: str = "user") -> None:
        self._backend = backend
        self._store = store
        self._user_cache_key = user_cache_key
        self.session: Optional[Session] = None
        self.user: Optional[UserProfile] = self._load_cached_user()
        self.team: List[UserProfile] = []
        self.state = ContextState.UNAUTHENTICATED
        self.last_error: Optional[Exception] = None
        self._generation = 0
        self._subscription: Optional[Subscription] = None
        self._tasks: Set[asyncio.Task] = set()
        self._mounted = False
        self._disposed = False

    def _load_cached_user(self) -> Optional[UserProfile]:
        raw = self._store.get_item(self._user_cache_key)
        if not raw:
            return None
        try:
            return UserProfile.model_validate_json(raw)
        except ValidationError:
            logger.warning(json.dumps({"event": "cached_user_invalid"}))
            self._store.remove_item(self._user_cache_key)
            return None

    # -----------------------------------------------------------------
    # lifecycle
    # -----------------------------------------------------------------
    async def mount(self) -> None:
        """Subscribe to session changes and load the current session once.

        The subscription stays active until :meth:`dispose`. The one-off
        lookup covers a restarted process, where no change notification
        will fire for the restored session.
        """
        if self._mounted or self._disposed:
            raise RuntimeError("SessionManager can only be mounted once")
        self._mounted = True
        self._subscription = self._backend.auth.on_auth_state_change(self._handle_session)

        generation = self._generation
        try:
            session = await self._backend.auth.get_session()
        except BackendError as exc:
            logger.error(json.dumps({
                "event": "session_restore_error",
                "detail": str(exc),
            }))
            self.last_error = exc
            return
        if self._disposed or generation != self._generation:
            # a notification arrived meanwhile and takes precedence
            return
        self._handle_session("INITIAL_SESSION", session)

    async def dispose(self) -> None:
        """Unsubscribe and stop every pending refresh."""
        if self._disposed:
            return
        self._disposed = True
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def __aenter__(self) -> "SessionManager":
        await self.mount()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.dispose()

    async def settled(self) -> ContextState:
        """Wait until no profile/team refresh is in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        return self.state

    # -----------------------------------------------------------------
    # session synchronisation
    # -----------------------------------------------------------------
    def _is_current(self, generation: int) -> bool:
        return not self._disposed and generation == self._generation

    def _spawn(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _handle_session(self, event: str, session: Optional[Session]) -> None:
        if self._disposed:
            return
        if session is None or session.user is None:
            logger.info(json.dumps({"event": "session_cleared", "auth_event": event}))
            self._reset()
            return
        self._generation += 1
        self.session = session
        self.state = ContextState.SESSION_KNOWN
        self.last_error = None
        logger.info(json.dumps({
            "event": "session_changed",
            "auth_event": event,
            "user_id": session.user.id,
        }))
        self._spawn(self._refresh(session.user.id, self._generation))

    def _reset(self) -> None:
        self._generation += 1
        had_state = (
            self.session is not None
            or self.user is not None
            or bool(self.team)
            or self.state is not ContextState.UNAUTHENTICATED
        )
        self.session = None
        self.user = None
        self.team = []
        self.state = ContextState.UNAUTHENTICATED
        self.last_error = None
        if had_state:
            self._store.remove_item(self._user_cache_key)

    def _fail(self, generation: int, event: str, exc: Exception) -> None:
        if not self._is_current(generation):
            return
        logger.error(json.dumps({
            "event": event,
            "state": self.state.value,
            "detail": str(exc),
        }))
        self.state = ContextState.FAILED
        self.last_error = exc

    async def _refresh(self, user_id: str, generation: int) -> None:
        try:
            row = await self._backend.table(USERS_TABLE).eq("id", user_id.strip()).single()
            user = UserProfile.model_validate(row)
        except (BackendError, ValidationError) as exc:
            self._fail(generation, "profile_fetch_error", exc)
            return
        if not self._is_current(generation):
            logger.debug(json.dumps({"event": "profile_fetch_stale", "user_id": user_id}))
            return
        self.user = user
        self._store.set_item(self._user_cache_key, user.model_dump_json(by_alias=True))
        self.state = ContextState.PROFILE_KNOWN

        try:
            rows = await self._backend.table(USERS_TABLE).eq("branch_id", user.branch_id).select()
            team = [UserProfile.model_validate(r) for r in rows or []]
        except (BackendError, ValidationError) as exc:
            self._fail(generation, "team_fetch_error", exc)
            return
        if not self._is_current(generation):
            logger.debug(json.dumps({"event": "team_fetch_stale", "branch_id": user.branch_id}))
            return
        self.team = team
        self.state = ContextState.READY
        logger.info(json.dumps({
            "event": "session_ready",
            "user_id": user.id,
            "branch_id": user.branch_id,
            "team_size": len(team),
        }))

    async def refresh(self) -> ContextState:
        """Re-run the profile/team refresh for the current session."""
        if self.session is None or self.session.user is None:
            return self.state
        self._handle_session("REFRESH", self.session)
        return await self.settled()

    # -----------------------------------------------------------------
    # operations
    # -----------------------------------------------------------------
    async def login(self, email: str, password: str) -> None:
        """Sign in with email and password.

        State is populated by the resulting session-change notification,
        not before this coroutine returns; await :meth:`settled` to wait
        for it.

        :raises AuthError: when the backend rejects the credentials
        """
        try:
            await self._backend.auth.sign_in_with_password(email, password)
        except AuthError as exc:
            logger.warning(json.dumps({
                "event": "login_failed",
                "status_code": exc.status_code,
                "detail": exc.message,
            }))
            raise

    async def logout(self) -> OperationResult[None]:
        """Sign out on the backend, then clear all local state.

        Local state is cleared even when the backend call fails; the
        failure is reported through the result.
        """
        result: OperationResult[None] = OperationResult.success()
        try:
            await self._backend.auth.sign_out()
        except BackendError as exc:
            logger.warning(json.dumps({"event": "logout_revoke_failed", "detail": exc.message}))
            result = OperationResult.failure(exc)
        finally:
            self._reset()
        logger.info(json.dumps({"event": "logout"}))
        return result

    @log_call
    async def set_team_shift(self, user_id: str, day: str, new_shift: str) -> OperationResult[List[Dict[str, Any]]]:
        """Set the shift of ``user_id`` on ``day``."""
        try:
            rows = await self._backend.table(SHIFTS_TABLE).eq("user_id", user_id).eq("day", day).update(
                {"shift": new_shift}
            )
        except BackendError as exc:
            logger.error(json.dumps({
                "event": "shift_update_error",
                "user_id": user_id,
                "day": day,
                "detail": exc.message,
            }))
            return OperationResult.failure(exc)
        logger.info(json.dumps({
            "event": "shift_updated",
            "user_id": user_id,
            "day": day,
            "rows": len(rows),
        }))
        return OperationResult.success(rows)

    @log_call
    async def delete_inventory(self, item_id: int) -> OperationResult[None]:
        """Delete the inventory item ``item_id``.

        A backend error or a delete that matched nothing both yield
        :class:`InventoryDeleteError`.
        """
        try:
            deleted = await self._backend.table(INVENTORY_TABLE).eq("id", item_id).delete()
        except BackendError as exc:
            logger.error(json.dumps({
                "event": "inventory_delete_error",
                "item_id": item_id,
                "detail": exc.message,
            }))
            return OperationResult.failure(InventoryDeleteError(item_id))
        if not deleted:
            logger.warning(json.dumps({"event": "inventory_delete_not_found", "item_id": item_id}))
            return OperationResult.failure(InventoryDeleteError(item_id))
        logger.info(json.dumps({"event": "inventory_deleted", "item_id": item_id}))
        return OperationResult.success()

    @log_call
    async def fetch_inventory(self) -> List[InventoryItem]:
        """Return every inventory row of the user's branch.

        Without a resolved user and branch, or on a backend error, an
        empty list is returned.
        """
        user = self.user
        if user is None or not user.branch_id:
            logger.error(json.dumps({"event": "inventory_fetch_without_user"}))
            return []
        try:
            rows = await self._backend.table(INVENTORY_TABLE).eq("branch_id", user.branch_id).select()
            return [InventoryItem.model_validate(r) for r in rows or []]
        except (BackendError, ValidationError) as exc:
            logger.error(json.dumps({
                "event": "inventory_fetch_error",
                "branch_id": user.branch_id,
                "detail": str(exc),
            }))
            return []

    def snapshot(self) -> SessionStateResponse:
        return SessionStateResponse(
            state=self.state.value,
            authenticated=self.session is not None,
            user=self.user,
            team=list(self.team),
            error=str(self.last_error) if self.last_error else None,
        )
