# main.py
from __future__ import annotations

from contextlib import asynccontextmanager
import json
import time
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse

# Import logging utilities early so that the logger configuration is
# applied before any other modules emit log messages.
from branchdesk.logging_config import logger

from branchdesk.clients.backend_client import BackendClient
from branchdesk.clients.http_client import HTTPClient
from branchdesk.core.config import Settings, get_settings
from branchdesk.core.context import SessionManager
from branchdesk.routes.auth import router as auth_router
from branchdesk.routes.inventory import router as inventory_router
from branchdesk.routes.payment import router as payment_router
from branchdesk.utils.cache import LocalStore


def create_app(settings: Optional[Settings] = None, backend: Any = None) -> FastAPI:
    """Build the application.

    ``backend`` replaces the HTTP backend client, which is otherwise built
    from ``settings`` in the lifespan together with its HTTP client.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store = LocalStore(settings.local_store_path)
        http_client: Optional[HTTPClient] = None
        client = backend
        if client is None:
            http_client = HTTPClient(settings)  # pooled connections
            client = BackendClient(http_client, settings, store)
        app.state.session_manager = SessionManager(client, store, user_cache_key=settings.user_cache_key)
        try:
            async with app.state.session_manager:
                yield
        finally:
            app.state.session_manager = None
            if http_client is not None:
                await http_client.aclose()

    app = FastAPI(title="branchdesk", default_response_class=ORJSONResponse, lifespan=lifespan)
    app.state.settings = settings

    app.include_router(auth_router)
    app.include_router(inventory_router)
    app.include_router(payment_router)

    # -----------------------------------------------------------------
    # Request logging middleware
    # -----------------------------------------------------------------
    @app.middleware("http")  # type: ignore[misc]
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        duration_ms = (time.time() - start_time) * 1000
        logger.info(json.dumps({
            "event": "http_request",
            "path": request.url.path,
            "method": request.method,
            "status": response.status_code,
            "duration_ms": round(duration_ms, 2),
        }))
        return response

    return app


app = create_app()
