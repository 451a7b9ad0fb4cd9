"""
Connection lifecycle events.

Subscribers register a callable on a ConnectionEventBus and receive a
ConnectionEvent for every state transition a connection handle goes through.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from ..constants import ConnectionEventType
from .connection_string import mask_credentials

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionEvent:
    """A single lifecycle notification."""

    type: ConnectionEventType
    connection_string: str
    cause: BaseException | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    def __str__(self) -> str:
        text = f"{self.type.value} {mask_credentials(self.connection_string)}"
        if self.cause is not None:
            text += f": {self.cause}"
        return text


ConnectionEventListener = Callable[[ConnectionEvent], None]


class ConnectionEventBus:
    """
    Delivers connection events to subscribers, in subscription order.

    A subscriber that raises is logged and skipped; delivery to the others
    continues.
    """

    def __init__(self) -> None:
        self._listeners: list[ConnectionEventListener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: ConnectionEventListener) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            A callable that removes the listener again
        """
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: ConnectionEventListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def has_listener(self, listener: ConnectionEventListener) -> bool:
        with self._lock:
            return listener in self._listeners

    def publish(self, event: ConnectionEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                logger.exception(f"Connection event listener failed for {event.type.value}")
