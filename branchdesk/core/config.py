"""
core/config.py
----------------

Application configuration module.

Defines strongly‑typed settings loaded from the environment using
``pydantic-settings``. These settings point the client at the backend
service and control HTTP timeouts, retries, the durable local store and
the payment redirect pages. The values provided here are sensible
defaults for a local backend and can be overridden via environment
variables at deployment time.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    The settings structure is flat and uses environment variables
    prefixed with ``BRANCHDESK_``.  For example, to point the client at
    a hosted project you can set
    ``BRANCHDESK_BACKEND_URL=https://xyz.supabase.co``.
    """

    # Backend service
    backend_url: str = Field("http://localhost:54321", description="Base URL of the backend service (auth and REST).")
    backend_anon_key: str = Field("", description="Public anon API key sent as ``apikey`` on every request.")

    # HTTP client settings
    http_timeout: float = Field(10.0, description="Hard timeout for HTTP requests in seconds.")
    http_max_retries: int = Field(3, ge=0, description="Maximum number of retries for idempotent operations (GET).")
    http_backoff_factor: float = Field(0.5, description="Backoff factor for exponential retry delays.")
    circuit_failure_threshold: int = Field(5, ge=1, description="Consecutive failures before a host is short-circuited.")
    circuit_reset_timeout: float = Field(60.0, description="Seconds a tripped host stays short-circuited.")

    # Durable local store
    local_store_path: Optional[str] = Field(None, description="JSON file backing the local store; memory only when unset.")
    user_cache_key: str = Field("user", description="Local store key holding the serialised current user.")
    session_cache_key: str = Field("branchdesk.auth.session", description="Local store key holding the auth session.")

    # Payment redirect pages
    redirect_delay_seconds: float = Field(5.0, gt=0, description="Delay before a payment page navigates away.")
    redirect_target: str = Field("/", description="Path the payment pages navigate to.")

    model_config = SettingsConfigDict(env_prefix="BRANCHDESK_", env_file=None, case_sensitive=False)


@lru_cache()
def get_settings() -> Settings:
    """Return a cached instance of the application settings.

    Using a cache prevents expensive environment parsing on every call.
    """
    return Settings()
