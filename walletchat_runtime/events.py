"""
Event subscription system for the WalletChat runtime.

Lets the presentation layer observe client state changes and message
arrivals through callbacks instead of polling.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable, Coroutine

from walletchat_runtime.types import RuntimeEvent

logger = logging.getLogger(__name__)

# Type alias for event handlers
EventHandler = Callable[[RuntimeEvent], Coroutine[Any, Any, None] | None]


class EventManager:
    """Dispatches runtime events to registered handlers.

    Events carried:

    - ``client.state``: lifecycle transition. Data: ``status``,
      ``generation``, ``address`` and ``error``.
    - ``message.received``: a streamed message was appended. Data:
      ``peer`` and ``message``.
    - ``message.blocked``: the spam gate dropped a streamed message.
      Data: ``peer``, ``sender`` and ``message_id``.

    Handlers may be plain functions or coroutines. A handler that raises
    is logged and skipped; the rest still run.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._wildcard_handlers: list[EventHandler] = []

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """Register a handler for a specific event type."""
        self._handlers[event_type].append(handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        """Register a handler for all event types."""
        self._wildcard_handlers.append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler | None = None) -> None:
        """Remove a handler (or all handlers) for an event type."""
        if handler is None:
            self._handlers.pop(event_type, None)
        else:
            handlers = self._handlers.get(event_type, [])
            self._handlers[event_type] = [h for h in handlers if h is not handler]

    async def emit(self, event_type: str, **data: Any) -> None:
        """Build an event and dispatch it to all matching handlers."""
        await self._dispatch(RuntimeEvent(type=event_type, data=data))

    async def _dispatch(self, event: RuntimeEvent) -> None:
        handlers = list(self._handlers.get(event.type, []))
        handlers.extend(self._wildcard_handlers)

        for handler in handlers:
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Error in event handler for %s", event.type)
