"""Event emitter and subscriber system.

Async pub/sub for SystemEvents. Once ``start_event_system()`` has run,
events are queued and drained by a background worker so emitters are never
blocked by slow subscribers. Before that (scripts, tests) they are
dispatched inline.

Usage:
    from src.events.bus import emit, subscribe

    subscribe(my_handler)  # async def my_handler(event: SystemEvent) -> None
    await emit(SystemEvent(event_type=EventType.SYNC_REQUESTED, ...))
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[SystemEvent], Coroutine[Any, Any, None]]

# ── Internal state ───────────────────────────────────────────────────

_subscribers: list[EventHandler] = []
_type_subscribers: dict[EventType, list[EventHandler]] = {}
_queue: asyncio.Queue[SystemEvent] | None = None
_worker_task: asyncio.Task[None] | None = None


# ── Public API ───────────────────────────────────────────────────────


def subscribe(handler: EventHandler, event_types: list[EventType] | None = None) -> None:
    """Register an event handler for all events, or only for ``event_types``."""
    if event_types is None:
        _subscribers.append(handler)
        logger.info("Registered global event subscriber: %s", handler.__name__)
        return
    for et in event_types:
        _type_subscribers.setdefault(et, []).append(handler)
    logger.info(
        "Registered event subscriber %s for types: %s",
        handler.__name__,
        [t.value for t in event_types],
    )


def unsubscribe(handler: EventHandler) -> None:
    """Remove a previously registered handler."""
    if handler in _subscribers:
        _subscribers.remove(handler)
    for handlers in _type_subscribers.values():
        if handler in handlers:
            handlers.remove(handler)


async def emit(event: SystemEvent) -> None:
    """Publish a SystemEvent to all subscribers."""
    logger.debug("Event emitted: %s (%s:%s)", event.event_type.value, event.entity_kind, event.entity_id)
    if _queue is None:
        await _dispatch(event)
        return
    await _queue.put(event)


# ── Background worker ────────────────────────────────────────────────


async def _event_worker(queue: asyncio.Queue[SystemEvent]) -> None:
    """Drain the queue and dispatch to subscribers until cancelled."""
    while True:
        event = await queue.get()
        try:
            await _dispatch(event)
        except Exception:
            logger.exception("Error in event worker")
        finally:
            queue.task_done()


async def _dispatch(event: SystemEvent) -> None:
    """Dispatch a single event to all matching subscribers, isolating failures."""
    handlers = list(_subscribers) + _type_subscribers.get(event.event_type, [])
    if not handlers:
        return

    results = await asyncio.gather(*[h(event) for h in handlers], return_exceptions=True)
    for handler, result in zip(handlers, results):
        if isinstance(result, Exception):
            logger.error(
                "Handler %s failed for event %s: %s",
                handler.__name__,
                event.event_type.value,
                result,
            )


# ── Lifecycle ────────────────────────────────────────────────────────


async def start_event_system() -> None:
    """Switch to queued delivery. Call during FastAPI lifespan startup."""
    global _queue, _worker_task
    _queue = asyncio.Queue()
    _worker_task = asyncio.create_task(_event_worker(_queue))
    logger.info(
        "Event system started with %d global + %d typed subscribers",
        len(_subscribers),
        sum(len(v) for v in _type_subscribers.values()),
    )


async def stop_event_system() -> None:
    """Drain pending events and stop the worker. Call during lifespan shutdown."""
    global _worker_task, _queue

    if _queue is not None:
        await _queue.join()

    if _worker_task is not None and not _worker_task.done():
        _worker_task.cancel()
        try:
            await _worker_task
        except asyncio.CancelledError:
            pass

    _worker_task = None
    _queue = None
    logger.info("Event system stopped")
