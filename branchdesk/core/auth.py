"""
core/auth.py
-------------

Utility functions for building authenticated requests to the backend.

These helpers centralise construction of the auth and REST endpoint
URLs and the HTTP headers required to call the backend. Every request
carries the public ``apikey``; the bearer token is the session's access
token when one exists and the anon key otherwise, so row-level security
on the server sees the signed-in user.
"""

from __future__ import annotations

from typing import Dict, Optional

import httpx


def normalise_base_url(base_url: str) -> str:
    """Return the backend base URL without a trailing slash.

    :param base_url: project URL (e.g. ``https://xyz.supabase.co``)
    :raises ValueError: if the URL is not an absolute http(s) URL
    :return: the normalised base URL
    """
    base_url = base_url.strip().rstrip("/")
    url = httpx.URL(base_url)
    if url.scheme not in ("http", "https") or not url.host:
        raise ValueError(f"Invalid backend URL: {base_url!r}")
    return base_url


def get_auth_url(base_url: str, path: str) -> str:
    """Return the URL of an auth endpoint, e.g. ``token`` or ``logout``."""
    return f"{normalise_base_url(base_url)}/auth/v1/{path.lstrip('/')}"


def get_rest_url(base_url: str, table: str) -> str:
    """Return the REST endpoint URL of ``table``."""
    if not table or "/" in table:
        raise ValueError(f"Invalid table name: {table!r}")
    return f"{normalise_base_url(base_url)}/rest/v1/{table}"


def build_auth_headers(api_key: str, access_token: Optional[str] = None) -> Dict[str, str]:
    """Create the HTTP headers required for a backend call.

    :param api_key: the project's public anon key
    :param access_token: the session access token, if a user is signed in
    :return: a dictionary of headers suitable for use with httpx
    """
    return {
        "apikey": api_key,
        "Authorization": f"Bearer {access_token or api_key}",
        "Content-Type": "application/json",
        "Accept": "application/json",
    }
