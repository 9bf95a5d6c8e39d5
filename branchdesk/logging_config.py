"""
logging_config.py
------------------

This module defines a shared logging configuration and utilities for
structured logging throughout branchdesk.  It uses Python's built‑in
``logging`` module rather than ``print`` so that log output can be
captured by standard logging handlers or external systems.  Messages are
serialised as JSON to make them easier to parse downstream.

To use this module, import ``logger`` and call its methods instead
of ``logging.info`` directly.  The ``log_call`` decorator can be
applied to functions (sync or async) to record entry and exit points at
the DEBUG level without leaking sensitive information such as tokens or
passwords.
"""

from __future__ import annotations

import inspect
import json
import logging
import sys
from functools import wraps
from typing import Any, Callable, Dict

# -----------------------------------------------------------------------------
# Configure global logging
# -----------------------------------------------------------------------------

# Set up the root logger once.  Log output goes to stdout with a timestamp
# and level; the message itself should be a JSON string.
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger("branchdesk")

_SENSITIVE_KEYWORDS = ("token", "password", "secret", "apikey")


def _sanitize(obj: Any) -> Any:
    """Recursively sanitise objects for logging.

    Dictionaries have keys containing 'token', 'password', 'secret' or
    'apikey' removed.  Lists and tuples are processed element‑wise.
    Pydantic models are dumped first.  Anything that is not JSON
    serialisable is replaced by its ``str``.
    """
    if isinstance(obj, (bytes, bytearray)):
        return f"<binary {len(obj)} bytes>"
    if isinstance(obj, dict):
        clean: Dict[str, Any] = {}
        for k, v in obj.items():
            if any(keyword in str(k).lower() for keyword in _SENSITIVE_KEYWORDS):
                continue
            clean[k] = _sanitize(v)
        return clean
    if isinstance(obj, (list, tuple)):
        return [_sanitize(i) for i in obj]
    if hasattr(obj, "model_dump"):
        try:
            return _sanitize(obj.model_dump(mode="json", by_alias=True))
        except Exception:
            return str(obj)
    try:
        return json.loads(json.dumps(obj))
    except (TypeError, ValueError):
        return str(obj)


def _log_start(func: Callable[..., Any], args: Any, kwargs: Any) -> None:
    try:
        logger.debug(json.dumps({
            "event": "call_start",
            "function": func.__name__,
            "args": _sanitize(args),
            "kwargs": _sanitize(kwargs),
        }))
    except Exception:
        logger.debug(json.dumps({"event": "call_start", "function": func.__name__}))


def _log_end(func: Callable[..., Any], result: Any) -> None:
    try:
        logger.debug(json.dumps({
            "event": "call_end",
            "function": func.__name__,
            "result": _sanitize(result),
        }))
    except Exception:
        logger.debug(json.dumps({"event": "call_end", "function": func.__name__}))


def log_call(func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator to log entry and exit of functions.

    This decorator logs a DEBUG level message before a function is executed
    and another after it returns.  The messages include the function name
    and a sanitised snapshot of the arguments and return value.  Coroutine
    functions are wrapped with an async wrapper so the logged result is the
    awaited value rather than the coroutine object.

    Examples
    --------

    >>> @log_call
    ... async def fetch(table):
    ...     return []
    """

    if inspect.iscoroutinefunction(func):
        @wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            _log_start(func, args, kwargs)
            result = await func(*args, **kwargs)
            _log_end(func, result)
            return result

        return async_wrapper

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        _log_start(func, args, kwargs)
        result = func(*args, **kwargs)
        _log_end(func, result)
        return result

    return wrapper


def log_http_request(method: str, url: str, *, headers: Dict[str, Any] | None = None,
                     params: Dict[str, Any] | None = None, json_body: Any = None,
                     status: int | None = None, duration_ms: float | None = None) -> None:
    """Log an outbound HTTP request at DEBUG level.

    Credentials are removed from headers (``Authorization`` and
    ``apikey``) and only high‑level information (method, URL, status and
    duration) is recorded.  The HTTP client calls this before and after
    performing each request.

    Parameters
    ----------
    method : str
        The HTTP method (GET, POST, etc.)
    url : str
        The URL being requested.
    headers : dict, optional
        Request headers.  Sensitive keys are removed.
    params : dict, optional
        Query parameters.
    json_body : Any, optional
        JSON payload for non‑GET requests.
    status : int, optional
        Response status code (log end only).
    duration_ms : float, optional
        Time taken in milliseconds (log end only).
    """
    data: Dict[str, Any] = {
        "event": "http_request",
        "method": method,
        "url": url,
    }
    if headers is not None:
        data["headers"] = {k: v for k, v in headers.items() if k.lower() not in {"authorization", "apikey"}}
    if params:
        data["params"] = {k: str(v) for k, v in params.items()}
    if json_body:
        data["json"] = _sanitize(json_body)
    if status is not None:
        data["status"] = status
    if duration_ms is not None:
        data["duration_ms"] = round(duration_ms, 2)
    logger.debug(json.dumps(data))
