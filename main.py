"""
Root application entry point for branchdesk
===========================================

This module exposes the FastAPI application instance defined in
``branchdesk/main.py`` so that deployment tools like Uvicorn can import
``main:app``.

Usage
-----

.. code-block:: bash

    BRANCHDESK_BACKEND_URL=https://xyz.supabase.co \
    BRANCHDESK_BACKEND_ANON_KEY=... \
    uvicorn main:app --host 127.0.0.1 --port 8000

The process holds a single signed-in session shared by every request, so
keep it bound to loopback.
"""

from branchdesk.main import app  # noqa: F401 re-export for Uvicorn

__all__ = ["app"]
