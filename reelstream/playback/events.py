from typing import Any, Callable, List
import logging

logger = logging.getLogger(__name__)

Handler = Callable[..., Any]


class Subscription:
    """Handle returned by ``EventSource.subscribe``; unsubscribing twice is harmless."""

    def __init__(self, source: "EventSource", handler: Handler):
        self._source = source
        self._handler = handler
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._source._remove(self._handler)
            self.active = False

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unsubscribe()


class EventSource:
    """A named stream of notifications (fullscreen change, pointer move, ...)."""

    def __init__(self, name: str = ""):
        self.name = name
        self._handlers: List[Handler] = []

    def subscribe(self, handler: Handler) -> Subscription:
        self._handlers.append(handler)
        return Subscription(self, handler)

    def _remove(self, handler: Handler) -> None:
        try:
            self._handlers.remove(handler)
        except ValueError:
            logger.debug(f"Handler already removed from {self.name or 'event source'}")

    def emit(self, *args: Any) -> None:
        # Copy so handlers may unsubscribe while being notified
        for handler in list(self._handlers):
            handler(*args)

    @property
    def handler_count(self) -> int:
        return len(self._handlers)
