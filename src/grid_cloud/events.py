"""Minimal publish/subscribe bus used for auth and sync notifications."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

Handler = Callable[..., Any]

# Auth events
LOGIN = "login"
LOGOUT = "logout"

# Sync cycle events
CYCLE_STARTED = "cycle-started"
CYCLE_SUCCEEDED = "cycle-succeeded"
CYCLE_FAILED = "cycle-failed"
CYCLE_SKIPPED = "cycle-skipped"


class EventBus:
    """Synchronous event dispatcher.

    Handlers are called in subscription order with the payload passed to
    ``emit``. A failing handler is logged and does not stop the others.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, event: str, handler: Handler) -> Callable[[], None]:
        """Register a handler and return a function that unregisters it."""
        self._handlers[event].append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers[event]:
                self._handlers[event].remove(handler)

        return _unsubscribe

    def emit(self, event: str, *args: Any, **kwargs: Any) -> None:
        """Dispatch an event to all handlers registered for it."""
        for handler in list(self._handlers.get(event, [])):
            try:
                handler(*args, **kwargs)
            except Exception:
                logger.exception("Handler for %s event failed", event)

    def handler_count(self, event: str) -> int:
        """Number of handlers currently subscribed to ``event``."""
        return len(self._handlers.get(event, []))
