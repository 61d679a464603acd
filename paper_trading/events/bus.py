"""
Typed publish/subscribe channel for engine lifecycle notifications.

Provides the closed ``EventType`` catalog, the ``Event`` envelope and the
in-process ``EventBus``:
- One publisher (the engine), any number of subscribers per event type
- Publishing never waits on subscriber processing
- Events for one trade are dispatched in publish order; there is no ordering
  guarantee across event types
"""

import asyncio
import inspect
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union
from uuid import uuid4

import structlog

logger = structlog.get_logger(__name__)


class EventType(str, Enum):
    """Every notification the engine can publish."""
    PRICE_UPDATE = "price_update"
    TRADE_CREATED = "trade_created"
    TRADE_COMPLETED = "trade_completed"
    TRADE_FAILED = "trade_failed"
    RISK_ALERT = "risk_alert"
    PORTFOLIO_RESET = "portfolio_reset"
    DAILY_RESET = "daily_reset"
    STARTED = "started"
    STOPPED = "stopped"


@dataclass
class Event:
    """
    A single published notification.

    Attributes:
        type: Event type from the catalog
        payload: Event-specific data (Trade, RiskAlert, price map, ...)
        timestamp: Engine-clock time at publication
        event_id: Unique identifier for this event
    """
    type: EventType
    payload: Any = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: str(uuid4()))


Handler = Callable[[Event], Union[None, Awaitable[None]]]


class EventBus:
    """
    In-process event bus.

    Inside a running event loop each handler call is queued with
    ``loop.call_soon``; the loop runs callbacks FIFO, so a trade's
    ``TRADE_CREATED`` always reaches a subscriber before its
    ``TRADE_COMPLETED``/``TRADE_FAILED``. Coroutine handlers are wrapped in
    tasks. Outside a loop (plain synchronous callers) handlers run inline.

    Handler errors are logged and swallowed so one bad subscriber cannot break
    the engine or other subscribers.
    """

    def __init__(self):
        self._subscribers: Dict[EventType, List[Handler]] = defaultdict(list)
        self._pending: Set[asyncio.Future] = set()
        self._scheduled = 0
        self.published_count = 0

    def subscribe(self, event_type: EventType, handler: Handler) -> Callable[[], None]:
        """
        Register ``handler`` for ``event_type``.

        Returns:
            A zero-argument callable that removes the subscription
        """
        event_type = EventType(event_type)
        self._subscribers[event_type].append(handler)
        logger.debug("event_bus.subscribed", event_type=event_type.value)

        def unsubscribe() -> None:
            self.unsubscribe(event_type, handler)

        return unsubscribe

    def unsubscribe(self, event_type: EventType, handler: Handler) -> bool:
        handlers = self._subscribers.get(EventType(event_type), [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def subscriber_count(self, event_type: Optional[EventType] = None) -> int:
        if event_type is not None:
            return len(self._subscribers.get(EventType(event_type), []))
        return sum(len(h) for h in self._subscribers.values())

    def publish(self, event_type: EventType, payload: Any = None,
                timestamp: Optional[datetime] = None) -> Event:
        """Publish an event to every current subscriber of its type."""
        event = Event(type=EventType(event_type), payload=payload)
        if timestamp is not None:
            event.timestamp = timestamp
        self.published_count += 1

        handlers = list(self._subscribers.get(event.type, []))
        if not handlers:
            return event

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        for handler in handlers:
            if loop is None:
                self._dispatch_inline(handler, event)
            else:
                self._scheduled += 1
                loop.call_soon(self._dispatch, handler, event)
        return event

    async def flush(self) -> None:
        """Wait until every queued dispatch and handler task has finished."""
        while self._scheduled or self._pending:
            await asyncio.sleep(0)
            if self._pending:
                await asyncio.gather(*list(self._pending), return_exceptions=True)

    def clear(self) -> None:
        self._subscribers.clear()

    def _dispatch(self, handler: Handler, event: Event) -> None:
        self._scheduled -= 1
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._on_handler_done)
        except Exception as e:
            logger.error(
                "event_bus.handler_error",
                event_type=event.type.value,
                handler=getattr(handler, "__name__", repr(handler)),
                error=str(e),
            )

    def _dispatch_inline(self, handler: Handler, event: Event) -> None:
        try:
            result = handler(event)
            if inspect.iscoroutine(result):
                # No loop to run it on; close it so it is not left un-awaited.
                result.close()
                logger.warning("event_bus.async_handler_without_loop",
                               event_type=event.type.value)
        except Exception as e:
            logger.error(
                "event_bus.handler_error",
                event_type=event.type.value,
                handler=getattr(handler, "__name__", repr(handler)),
                error=str(e),
            )

    def _on_handler_done(self, task: asyncio.Future) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("event_bus.handler_error", error=str(error))
