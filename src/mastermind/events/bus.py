"""Diagnostic event bus for agent-loop observers.

Every ``AgentEvent`` the loop records is attached to the next
``ChatResponse`` and, when a bus is configured, published here for
observers that outlive a single chat: log shippers, status bars, tests.
"""

from __future__ import annotations

import inspect
import logging
from collections import deque
from typing import Any, Callable, Iterable

from mastermind.types import AgentEvent, EventType

_logger = logging.getLogger(__name__)

# Subscribe with this key to receive every event
WILDCARD = "*"

# Sync or async callable taking an AgentEvent
Handler = Callable[[AgentEvent], Any]


class EventBus:
    """Ordered fan-out of diagnostic events.

    Handlers run one after another in subscription order, typed handlers
    before wildcard ones, so an observer sees a chat's events in the
    order the loop recorded them.  A failing handler is logged and
    counted in ``failures``; it never reaches the agent loop.

    Usage::

        bus = EventBus()
        bus.subscribe([EventType.FALLBACK, EventType.LOOP_DETECTED], alert)
        loop = AgentLoop(broker, transport, event_bus=bus)
    """

    def __init__(self, max_history: int = 200) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._history: deque[AgentEvent] = deque(maxlen=max_history)
        self.failures = 0

    def subscribe(
        self,
        topics: EventType | str | Iterable[EventType | str],
        handler: Handler,
    ) -> Callable[[], None]:
        """Register *handler* for one or more topics.

        Returns a callable that removes every registration made here.
        """
        keys = self._keys(topics)
        for key in keys:
            self._handlers.setdefault(key, []).append(handler)

        def _unsubscribe() -> None:
            for key in keys:
                self._remove(key, handler)

        return _unsubscribe

    def unsubscribe(self, topic: EventType | str, handler: Handler) -> None:
        for key in self._keys(topic):
            self._remove(key, handler)

    async def emit(self, event: AgentEvent) -> None:
        self._history.append(event)
        handlers = self._handlers.get(event.type.value, []) + self._handlers.get(WILDCARD, [])
        for handler in handlers:
            await self._deliver(handler, event)

    @property
    def history(self) -> list[AgentEvent]:
        return list(self._history)

    def of_type(self, event_type: EventType) -> list[AgentEvent]:
        """Recorded events of one type, oldest first."""
        return [e for e in self._history if e.type is event_type]

    def clear(self) -> None:
        self._handlers.clear()
        self._history.clear()
        self.failures = 0

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _keys(topics: EventType | str | Iterable[EventType | str]) -> list[str]:
        if isinstance(topics, (EventType, str)):
            topics = [topics]
        return [t.value if isinstance(t, EventType) else str(t) for t in topics]

    def _remove(self, key: str, handler: Handler) -> None:
        handlers = self._handlers.get(key)
        if handlers and handler in handlers:
            handlers.remove(handler)

    async def _deliver(self, handler: Handler, event: AgentEvent) -> None:
        try:
            outcome = handler(event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            self.failures += 1
            _logger.exception(
                "Diagnostic handler %r failed on %s",
                getattr(handler, "__qualname__", handler), event.type.value,
            )
