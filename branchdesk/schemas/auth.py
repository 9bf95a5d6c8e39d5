"""
schemas/auth.py
----------------

Pydantic models for authentication, the backend session and the staff
user profile. Field names mirror the backend's JSON so rows and token
responses validate directly.
"""

from __future__ import annotations

import time
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class LoginData(BaseModel):
    email: str
    password: str


class AuthUser(BaseModel):
    """The identity embedded in a session."""
    id: str
    email: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class Session(BaseModel):
    """Token bundle issued by the auth API."""
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    expires_at: Optional[int] = None
    user: Optional[AuthUser] = None

    model_config = ConfigDict(extra="ignore")

    def is_expired(self, now: Optional[float] = None, margin: int = 10) -> bool:
        """Whether the access token expires within ``margin`` seconds."""
        if self.expires_at is None:
            return False
        now = time.time() if now is None else now
        return self.expires_at <= now + margin


class UserProfile(BaseModel):
    """A row of the ``users`` table."""
    id: str
    branch_id: str
    name: str = ""
    title: str = ""
    avatar_url: Optional[str] = None
    break_: bool = Field(False, alias="break")

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class SessionStateResponse(BaseModel):
    """Serialisable view of the session manager."""
    state: str
    authenticated: bool
    user: Optional[UserProfile] = None
    team: List[UserProfile] = Field(default_factory=list)
    error: Optional[str] = None
