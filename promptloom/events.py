import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

Listener = Callable[[str, Any], None]


class ChangeNotifier:
    """Fans change events out to registered listeners.

    A failing listener is logged and skipped; it never aborts the mutation
    that triggered the event.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def _notify(self, event: str, payload: Any = None) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, payload)
            except Exception:
                logger.exception("Change listener failed on %r", event)
