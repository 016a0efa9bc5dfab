"""In-process event bus for spec lifecycle events.

Handlers for an event type run sequentially in registration order; each is
awaited before the next starts. A handler exception is logged and recorded in
the PublishReport, and never stops the remaining handlers or fails publish().

Startup barrier: the bus is built with the names of the core handlers it
must carry. wait_ready() resolves once all of them are registered, so a
publisher that needs guaranteed delivery awaits it before publishing.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field

import structlog

from specflow.infra.errors import EventBusError
from specflow.workflow.events import EventPayload, LifecycleEvent

logger = structlog.get_logger()

EventHandler = Callable[[LifecycleEvent], Awaitable[None] | None]


@dataclass(frozen=True)
class HandlerRegistration:
    event_type: str
    name: str
    handler: EventHandler


@dataclass(frozen=True)
class HandlerFailure:
    handler_name: str
    error_type: str
    message: str


@dataclass
class PublishReport:
    """Outcome of one publish(): how many handlers ran and which failed."""

    event: LifecycleEvent
    handled: int = 0
    failures: list[HandlerFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


def _handler_name(handler: EventHandler) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


class EventBus:
    """Ordered, failure-isolated fan-out of lifecycle events."""

    def __init__(self, required_handlers: Iterable[str] = ()) -> None:
        self._handlers: dict[str, list[HandlerRegistration]] = defaultdict(list)
        self._required = frozenset(required_handlers)
        self._registered_names: set[str] = set()
        self._ready = asyncio.Event()
        if not self._required:
            self._ready.set()

    # ── registration ──

    def register(
        self,
        event_type: str,
        handler: EventHandler,
        *,
        name: str | None = None,
    ) -> HandlerRegistration:
        """Append handler to the ordered list for event_type. Duplicates are allowed."""
        if not event_type:
            raise EventBusError("Cannot register a handler for an empty event type")
        registration = HandlerRegistration(
            event_type=event_type,
            name=name or _handler_name(handler),
            handler=handler,
        )
        self._handlers[event_type].append(registration)
        self._registered_names.add(registration.name)
        logger.debug("event_handler_registered", event_type=event_type, handler=registration.name)

        if not self._ready.is_set() and self._required <= self._registered_names:
            self._ready.set()
            logger.info("event_bus_ready", handlers=sorted(self._required))
        return registration

    def unregister(self, event_type: str, handler: EventHandler) -> bool:
        """Remove the first registration of handler for event_type."""
        registrations = self._handlers.get(event_type, [])
        for i, registration in enumerate(registrations):
            if registration.handler == handler:
                del registrations[i]
                self._refresh_registered_names()
                return True
        return False

    def clear(self) -> None:
        self._handlers.clear()
        self._refresh_registered_names()

    def _refresh_registered_names(self) -> None:
        self._registered_names = {
            r.name for registrations in self._handlers.values() for r in registrations
        }
        if self._ready.is_set() and not self._required <= self._registered_names:
            self._ready.clear()
            logger.warning("event_bus_not_ready", missing=sorted(self.missing_handlers))

    def handler_names(self, event_type: str) -> list[str]:
        return [r.name for r in self._handlers.get(event_type, [])]

    # ── startup barrier ──

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    @property
    def missing_handlers(self) -> frozenset[str]:
        return self._required - self._registered_names

    async def wait_ready(self, timeout: float | None = None) -> None:
        """Block until every required handler is registered.

        Raises EventBusError(code="READY_TIMEOUT") if timeout elapses first.
        """
        if self._ready.is_set():
            return
        try:
            await asyncio.wait_for(self._ready.wait(), timeout=timeout)
        except TimeoutError:
            raise EventBusError(
                "Event handlers not registered in time: "
                + ", ".join(sorted(self.missing_handlers)),
                code="READY_TIMEOUT",
            ) from None

    # ── publishing ──

    @staticmethod
    def create_event(
        event_type: str,
        spec_id: str,
        payload: EventPayload,
        related_id: str | None = None,
    ) -> LifecycleEvent:
        return LifecycleEvent(
            type=event_type,
            spec_id=spec_id,
            payload=payload,
            related_id=related_id,
        )

    async def publish(self, event: LifecycleEvent) -> PublishReport:
        """Run every handler for event.type in order and report the outcome.

        Raises EventBusError only for a malformed event.
        """
        self._check_event(event)
        report = PublishReport(event=event)

        # Snapshot: handlers registered during dispatch apply to the next event.
        for registration in list(self._handlers.get(event.type, [])):
            try:
                result = registration.handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.exception(
                    "event_handler_failed",
                    event_type=event.type,
                    spec_id=event.spec_id,
                    handler=registration.name,
                )
                report.failures.append(
                    HandlerFailure(
                        handler_name=registration.name,
                        error_type=type(exc).__name__,
                        message=str(exc),
                    )
                )
            else:
                report.handled += 1

        logger.debug(
            "event_published",
            event_type=event.type,
            spec_id=event.spec_id,
            handled=report.handled,
            failed=len(report.failures),
        )
        return report

    @staticmethod
    def _check_event(event: object) -> None:
        if not isinstance(event, LifecycleEvent):
            raise EventBusError(f"Not a LifecycleEvent: {type(event).__name__}")
        namespace, _, action = str(event.type).partition(".")
        if not namespace or not action:
            raise EventBusError(f"Event type must be namespaced like 'spec.created': '{event.type}'")
        if not event.spec_id:
            raise EventBusError(f"Event {event.type} has no subject spec id")
