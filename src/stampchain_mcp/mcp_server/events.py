"""In-process lifecycle notifications.

Subscribers are plain callables invoked synchronously in subscription
order. A failing subscriber is logged and does not prevent delivery to the
others.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Generic, TypeVar

import structlog

logger = structlog.get_logger(__name__)

EventT = TypeVar("EventT", bound=Enum)
Callback = Callable[..., Any]


class SessionEvent(str, Enum):
    """Notifications emitted by the session manager."""

    CONNECT = "connect"
    DISCONNECT = "disconnect"
    ERROR = "error"
    ACTIVITY = "activity"


class ServerEvent(str, Enum):
    """Notifications emitted by the server orchestrator."""

    START = "start"
    STOP = "stop"
    REQUEST = "request"
    TOOL_EXECUTION = "tool_execution"


class EventEmitter(Generic[EventT]):
    """Process-local fan-out keyed by an event enum."""

    def __init__(self, name: str = "events") -> None:
        self._name = name
        self._subscribers: dict[EventT, list[Callback]] = {}

    def subscribe(self, event: EventT, callback: Callback) -> Callable[[], None]:
        """Register ``callback`` for ``event``.

        Returns:
            A callable that removes this subscription; calling it twice is
            harmless
        """
        subscribers = self._subscribers.setdefault(event, [])
        subscribers.append(callback)

        def _unsubscribe() -> None:
            current = self._subscribers.get(event)
            if not current:
                return
            try:
                current.remove(callback)
            except ValueError:
                return
            if not current:
                self._subscribers.pop(event, None)

        return _unsubscribe

    def emit(self, event: EventT, *args: Any) -> None:
        # Copy so subscribers may unsubscribe while being notified.
        for callback in list(self._subscribers.get(event, ())):
            try:
                callback(*args)
            except Exception:
                logger.exception(
                    "event_subscriber_failed",
                    emitter=self._name,
                    event_type=event.value,
                )

    def subscriber_count(self, event: EventT | None = None) -> int:
        if event is not None:
            return len(self._subscribers.get(event, ()))
        return sum(len(callbacks) for callbacks in self._subscribers.values())

    def clear(self) -> None:
        self._subscribers.clear()
