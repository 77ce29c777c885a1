"""
Events - In-process event bus for lease transitions and tie-break results.

Handlers are advisory: a failing handler is logged and never propagates
into the operation that emitted the event.
"""

import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

from leasebid.utils.logger import get_logger

logger = get_logger("events")

TIEBREAK_RESOLVED = "tiebreak:resolved"
LEASE_TRANSITION = "lease:transition"
AUCTION_SETTLED = "auction:settled"
BOUNTY_RELEASED = "bounty:released"

Handler = Callable[["Event"], Any]


@dataclass
class Event:
    name: str
    payload: Dict[str, Any]
    emitted_at: float = field(default_factory=time.time)


class EventBus:
    """Synchronous publish/subscribe with a bounded history."""

    def __init__(self, history_size: int = 1000):
        self.history_size = history_size
        self.history: List[Event] = []
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, name: str, handler: Handler) -> None:
        self._handlers[name].append(handler)

    def emit(self, name: str, payload: Dict[str, Any]) -> Event:
        event = Event(name=name, payload=dict(payload))
        self.history.append(event)
        if len(self.history) > self.history_size:
            del self.history[: len(self.history) - self.history_size]

        for handler in list(self._handlers.get(name, ())):
            try:
                handler(event)
            except Exception as e:
                logger.warning(f"Event handler for {name} failed: {e}")
        return event

    def events(self, name: str) -> List[Event]:
        return [e for e in self.history if e.name == name]


__all__ = [
    "Event",
    "EventBus",
    "TIEBREAK_RESOLVED",
    "LEASE_TRANSITION",
    "AUCTION_SETTLED",
    "BOUNTY_RELEASED",
]
