"""Synchronous in-process event bus.

Domain envelopes published by ``salesflow.events`` are fanned out here to
the workflow dispatcher and any other subscriber registered at startup.
Handlers run inline on the publishing thread; an exception raised by a
handler propagates to the publisher.
"""

from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class InternalEvent:
    name: str
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def workspace_id(self) -> str | None:
        value = self.payload.get("workspace_id")
        return str(value) if value is not None else None


EventHandler = Callable[[InternalEvent], None]


class InProcessEventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        handlers = self._subscribers[event_name]
        if handler not in handlers:
            handlers.append(handler)

    def subscribe_many(self, event_names: Iterable[str], handler: EventHandler) -> None:
        for event_name in event_names:
            self.subscribe(event_name, handler)

    def is_subscribed(self, event_name: str, handler: EventHandler) -> bool:
        return handler in self._subscribers.get(event_name, [])

    def publish(self, event_name: str, payload: dict[str, Any]) -> None:
        event = InternalEvent(name=event_name, payload=payload)
        for handler in list(self._subscribers.get(event_name, [])):
            handler(event)

    def clear(self) -> None:
        self._subscribers.clear()


event_bus = InProcessEventBus()
