"""
core/lifecycle.py
-----------------

Disposer objects for resources with a scoped lifetime: session-change
subscriptions and redirect timers. A :class:`Disposable` wraps a release
callback and guarantees it runs at most once, whether it is released
explicitly or through a ``with`` block.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional


class Disposable:
    """Release handle that runs its callback at most once."""

    def __init__(self, release: Callable[[], Any]) -> None:
        self._release: Optional[Callable[[], Any]] = release

    @property
    def disposed(self) -> bool:
        return self._release is None

    def dispose(self) -> None:
        release, self._release = self._release, None
        if release is not None:
            release()

    def __enter__(self) -> "Disposable":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.dispose()


class Subscription(Disposable):
    """Handle returned by ``on_auth_state_change``."""

    def unsubscribe(self) -> None:
        self.dispose()


class LoopScheduler:
    """Schedules callbacks on the running asyncio event loop.

    ``call_later`` returns a :class:`Disposable` whose disposal cancels the
    pending callback. Pages receive a scheduler by injection so tests can
    substitute a manual clock.
    """

    def call_later(self, delay: float, callback: Callable[[], Any]) -> Disposable:
        handle = asyncio.get_running_loop().call_later(delay, callback)
        return Disposable(handle.cancel)
