"""
routes/auth.py
---------------

API routes for signing in and out and for reading the session state.
The routes delegate to the application's single
:class:`~branchdesk.core.context.SessionManager`, obtained through
:func:`get_session_manager`.
"""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends, HTTPException, Request

from branchdesk.clients.backend_client import AuthError
from branchdesk.core.context import SessionManager
from branchdesk.logging_config import logger
from branchdesk.schemas.auth import LoginData, SessionStateResponse

router = APIRouter(prefix="/auth", tags=["Auth"])


def get_session_manager(request: Request) -> SessionManager:
    """Dependency returning the session manager from the application state."""
    manager = getattr(request.app.state, "session_manager", None)
    if manager is None:
        raise RuntimeError("No SessionManager configured for this application")
    return manager


@router.post("/login", response_model=SessionStateResponse)
async def post_login(data: LoginData, manager: SessionManager = Depends(get_session_manager)):
    logger.info(json.dumps({"event": "login_request", "email": data.email}))
    try:
        await manager.login(data.email, data.password)
    except AuthError as exc:
        raise HTTPException(status_code=401, detail=exc.message or "Invalid credentials")
    await manager.settled()
    return manager.snapshot()


@router.post("/logout", response_model=SessionStateResponse)
async def post_logout(manager: SessionManager = Depends(get_session_manager)):
    await manager.logout()
    return manager.snapshot()


@router.get("/session", response_model=SessionStateResponse)
async def get_session(manager: SessionManager = Depends(get_session_manager)):
    return manager.snapshot()


@router.post("/refresh", response_model=SessionStateResponse)
async def post_refresh(manager: SessionManager = Depends(get_session_manager)):
    if manager.session is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    await manager.refresh()
    return manager.snapshot()
