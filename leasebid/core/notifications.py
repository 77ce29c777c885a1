"""
Notifications - Consent-gated, best-effort holder notifications.

The engine only asks `may_notify(actor)` and enqueues; batching into
digests and the daily volume cap are the channel's job. Delivery
transport is external (the `sender` callback).
"""

import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

from leasebid.core.cache import Clock
from leasebid.utils.logger import get_logger

logger = get_logger("notify")

SECONDS_PER_DAY = 86_400


@dataclass
class Notification:
    actor: str
    kind: str
    title: str
    body: str = ""
    data: Dict[str, Any] = field(default_factory=dict)
    created_at: float = 0.0


class NotificationChannel:
    """Interface for notification channels."""

    def may_notify(self, actor: str) -> bool:
        raise NotImplementedError

    def enqueue(self, notification: Notification) -> bool:
        raise NotImplementedError


class NullNotificationChannel(NotificationChannel):
    """Channel used when no transport is configured; never notifies."""

    def may_notify(self, actor: str) -> bool:
        return False

    def enqueue(self, notification: Notification) -> bool:
        return False


class DigestNotificationChannel(NotificationChannel):
    """
    Queues notifications per actor and flushes them as digests.
    
    Only actors that explicitly opted in are notified. Each actor receives
    at most `daily_cap` notifications per UTC day; anything over the cap
    at flush time is dropped.
    """

    def __init__(
        self,
        daily_cap: int = 50,
        sender: Optional[Callable[[str, List[Notification]], Any]] = None,
        clock: Clock = time.time,
    ):
        self.daily_cap = daily_cap
        self.sender = sender
        self.clock = clock
        self.consents: Set[str] = set()
        self.queues: Dict[str, List[Notification]] = defaultdict(list)
        self.sent_today: Dict[str, int] = defaultdict(int)
        self._day = int(clock() // SECONDS_PER_DAY)
        self.delivered: List[Notification] = []

    def grant_consent(self, actor: str) -> None:
        self.consents.add(actor.lower())

    def revoke_consent(self, actor: str) -> None:
        key = actor.lower()
        self.consents.discard(key)
        self.queues.pop(key, None)

    def may_notify(self, actor: str) -> bool:
        return bool(actor) and actor.lower() in self.consents

    def enqueue(self, notification: Notification) -> bool:
        if not self.may_notify(notification.actor):
            return False
        if not notification.created_at:
            notification.created_at = self.clock()
        self.queues[notification.actor.lower()].append(notification)
        return True

    def pending(self, actor: Optional[str] = None) -> int:
        if actor is not None:
            return len(self.queues.get(actor.lower(), ()))
        return sum(len(q) for q in self.queues.values())

    def _roll_day(self, now: float) -> None:
        day = int(now // SECONDS_PER_DAY)
        if day != self._day:
            self._day = day
            self.sent_today.clear()

    def flush_digest(self, now: Optional[float] = None) -> Dict[str, List[Notification]]:
        """
        Deliver queued notifications, capped to each actor's remaining
        daily budget, and clear the queues.
        
        Returns:
            Mapping actor -> notifications delivered in this flush
        """
        now = self.clock() if now is None else now
        self._roll_day(now)

        batches: Dict[str, List[Notification]] = {}
        for actor, queue in list(self.queues.items()):
            if not queue:
                continue
            budget = max(0, self.daily_cap - self.sent_today[actor])
            batch = queue[:budget]
            dropped = len(queue) - len(batch)
            if dropped:
                logger.warning(f"Daily cap reached for {actor[:10]}: dropped {dropped} notification(s)")
            if batch:
                try:
                    if self.sender is not None:
                        self.sender(actor, batch)
                except Exception as e:
                    logger.warning(f"Digest delivery to {actor[:10]} failed: {e}")
                else:
                    self.sent_today[actor] += len(batch)
                    self.delivered.extend(batch)
                    batches[actor] = batch
            self.queues[actor] = []

        if batches:
            logger.info(f"Digest flushed: {sum(len(b) for b in batches.values())} notification(s) to {len(batches)} actor(s)")
        return batches


__all__ = [
    "Notification",
    "NotificationChannel",
    "NullNotificationChannel",
    "DigestNotificationChannel",
]
