"""
Flag event publication for the Feature Flag Service.
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Set, Union

from shared.logging import get_logger
from .flags.models import FlagDefinition, utcnow


class FlagEventType(str, Enum):
    """Administrative flag events."""
    CREATED = "flag_created"
    UPDATED = "flag_updated"
    DELETED = "flag_deleted"


@dataclass(frozen=True)
class FlagEvent:
    """A flag mutation that already happened."""
    type: FlagEventType
    flag: str
    definition: Optional[FlagDefinition] = None
    occurred_at: datetime = field(default_factory=utcnow)


Subscriber = Callable[[FlagEvent], Union[None, Awaitable[None]]]


class EventBus:
    """Observer list for flag events.

    ``publish`` schedules one task per subscriber and returns immediately.
    Subscriber failures are logged and never reach the publisher.
    """

    def __init__(self):
        self.logger = get_logger("feature_flags.events")
        self._subscribers: List[Subscriber] = []
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Add a subscriber; returns a callable that removes it."""
        self._subscribers.append(subscriber)
        return lambda: self.unsubscribe(subscriber)

    def unsubscribe(self, subscriber: Subscriber):
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def publish(self, event: FlagEvent):
        """Deliver ``event`` to every subscriber without waiting for them."""
        for subscriber in list(self._subscribers):
            task = asyncio.ensure_future(self._deliver(subscriber, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        self.logger.debug("Flag event published", event=event.type.value, flag=event.flag,
                          subscribers=len(self._subscribers))

    async def drain(self, timeout: Optional[float] = None):
        """Wait for in-flight deliveries, e.g. on shutdown."""
        if not self._pending:
            return
        done, pending = await asyncio.wait(set(self._pending), timeout=timeout)
        if pending:
            self.logger.warning("Flag event deliveries still pending", count=len(pending))

    async def _deliver(self, subscriber: Subscriber, event: FlagEvent):
        try:
            outcome: Any = subscriber(event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            self.logger.error(
                "Flag event subscriber failed",
                event=event.type.value,
                flag=event.flag,
                subscriber=getattr(subscriber, "__qualname__", repr(subscriber)),
                error=str(e)
            )
