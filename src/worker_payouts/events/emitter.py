"""Event emitter for publishing domain events.

The emitter provides:
- Handler registration with type filtering
- Category-based routing
- Error isolation (handler failures don't break other handlers)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, TypeVar

from worker_payouts.events.types import DomainEvent, EventCategory

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=DomainEvent)

EventHandler = Callable[[DomainEvent], None]


@dataclass(frozen=True)
class HandlerRegistration:
    """A handler with its optional type and category filters."""

    handler: EventHandler
    event_types: frozenset[str] | None = None
    categories: frozenset[EventCategory] | None = None

    def matches(self, event: DomainEvent) -> bool:
        if self.event_types is not None and event.event_type not in self.event_types:
            return False
        return self.categories is None or event.category in self.categories


class EventEmitter:
    """Synchronous event emitter.

    Publishes events to registered handlers. Handlers are isolated -
    if one fails, others still receive the event.

    Usage:
        emitter = EventEmitter()

        # Register handler for specific event type
        emitter.on(PayoutPaid, notify_worker)

        # Register handler for category
        emitter.on_category(EventCategory.LEDGER, audit_balance_change)

        # Emit event
        emitter.emit(payout_paid_event)
    """

    def __init__(self) -> None:
        self._handlers: list[HandlerRegistration] = []

    def on(
        self,
        event_type: type[T] | list[type[T]],
        handler: EventHandler,
    ) -> None:
        """Register handler for specific event type(s)."""
        types = event_type if isinstance(event_type, list) else [event_type]
        self._handlers.append(
            HandlerRegistration(handler, event_types=frozenset(t.__name__ for t in types))
        )

    def on_category(
        self,
        category: EventCategory | list[EventCategory],
        handler: EventHandler,
    ) -> None:
        """Register handler for event category(ies)."""
        cats = category if isinstance(category, list) else [category]
        self._handlers.append(HandlerRegistration(handler, categories=frozenset(cats)))

    def on_all(self, handler: EventHandler) -> None:
        self._handlers.append(HandlerRegistration(handler))

    def off(self, handler: EventHandler) -> None:
        """Unregister every registration of a handler."""
        self._handlers = [reg for reg in self._handlers if reg.handler is not handler]

    def emit(self, event: DomainEvent) -> list[Exception]:
        """Deliver an event to every matching handler.

        Returns the exceptions raised by handlers; each is logged and the
        remaining handlers still run.
        """
        errors: list[Exception] = []
        for reg in [r for r in self._handlers if r.matches(event)]:
            try:
                reg.handler(event)
            except Exception as e:
                logger.exception("Handler %r failed for %s", reg.handler, event.event_type)
                errors.append(e)
        return errors

    def emit_all(self, events: Iterable[DomainEvent]) -> list[Exception]:
        """Emit events in order, collecting handler errors."""
        errors: list[Exception] = []
        for event in events:
            errors.extend(self.emit(event))
        return errors


def log_event(event: DomainEvent) -> None:
    """Handler writing every event to the service log."""
    logger.info("%s %s", event.event_type, event.to_json())
