"""
Client event bus.

Framework bindings subscribe here to re-read flags and configs whenever the
client refreshes them.
"""

import logging
from enum import Enum
from typing import Callable, Dict, List, Union

logger = logging.getLogger("flagdash.events")

Listener = Callable[..., None]


class ClientEvent(str, Enum):
    """Events emitted by the FlagDash client."""

    READY = "ready"
    ERROR = "error"
    FLAGS_UPDATED = "flags_updated"
    CONFIGS_UPDATED = "configs_updated"
    CONFIG_UPDATED = "config_updated"
    """Legacy alias, emitted right after ``configs_updated``."""
    AI_CONFIG_UPDATED = "ai_config_updated"
    REALTIME_CHANGED = "realtime_changed"


class EventBus:
    """
    Synchronous multi-listener pub/sub keyed by event name.

    Listeners run in subscription order. An exception raised by one listener
    is logged and does not prevent the others from running.
    """

    def __init__(self) -> None:
        self._listeners: Dict[ClientEvent, List[Listener]] = {}

    def on(self, event: Union[ClientEvent, str], listener: Listener) -> Callable[[], None]:
        """
        Register a listener.

        Args:
            event: Event name
            listener: Callback receiving the event payload

        Returns:
            A function that removes the listener
        """
        name = ClientEvent(event)
        self._listeners.setdefault(name, []).append(listener)

        def unsubscribe() -> None:
            self.off(name, listener)

        return unsubscribe

    def off(self, event: Union[ClientEvent, str], listener: Listener) -> None:
        """Remove a listener. Unknown listeners are ignored."""
        listeners = self._listeners.get(ClientEvent(event))
        if listeners and listener in listeners:
            listeners.remove(listener)

    def emit(self, event: ClientEvent, *args) -> None:
        """Invoke every listener currently registered for ``event``."""
        for listener in list(self._listeners.get(event, ())):
            try:
                listener(*args)
            except Exception as e:
                logger.warning(f"Error in {event.value} listener: {e}")

    def listener_count(self, event: Union[ClientEvent, str]) -> int:
        return len(self._listeners.get(ClientEvent(event), ()))

    def clear(self) -> None:
        """Remove all listeners."""
        self._listeners.clear()
