"""Per-session async event streams.

Producers (agent runtime relay, approval gate, workspace watcher) publish
into the session's bus; the presentation layer consumes it. Sessions are
independent: a slow consumer on one session never blocks another.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from openwork.adapters.events import ErrorEvent, StreamEvent, dict_to_event

logger = logging.getLogger(__name__)

BACKPRESSURE_TIMEOUT_SECONDS = 30.0


class SessionEventBus:
    """Async queue carrying one session's events in publication order."""

    def __init__(self, session_id: str, maxsize: int = 5000) -> None:
        self.session_id = session_id
        self._queue: asyncio.Queue[StreamEvent] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._closed_event = asyncio.Event()
        self._seq = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def last_seq(self) -> int:
        return self._seq

    def qsize(self) -> int:
        return self._queue.qsize()

    async def emit(self, event: StreamEvent) -> bool:
        """Stamp *event* with the session id and next sequence number and queue it.

        Returns False if the bus is closed or the event was dropped.
        """
        if self._closed:
            return False
        self._seq += 1
        event.session_id = self.session_id
        event.seq = self._seq
        try:
            # Use await put() with timeout to add backpressure instead of dropping
            await asyncio.wait_for(
                self._queue.put(event), timeout=BACKPRESSURE_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.error(
                "Session %s event queue blocked for %.0fs, dropping: %s seq=%d (queue size: %d)",
                self.session_id, BACKPRESSURE_TIMEOUT_SECONDS,
                event.type, event.seq, self._queue.qsize(),
            )
            return False
        return True

    @property
    def exhausted(self) -> bool:
        """Closed and fully drained: no event will ever arrive again."""
        return self._closed and self._queue.empty()

    async def next_event(self, timeout: float) -> StreamEvent | None:
        """Next event, or None if none arrived within *timeout* seconds.

        Returns None early when the bus is closed with nothing queued.
        """
        if not self._queue.empty():
            return self._queue.get_nowait()
        if self._closed:
            return None
        getter = asyncio.ensure_future(self._queue.get())
        closer = asyncio.ensure_future(self._closed_event.wait())
        try:
            await asyncio.wait(
                {getter, closer}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            closer.cancel()
        if getter.done() and not getter.cancelled():
            return getter.result()
        getter.cancel()
        return None

    async def consume(self) -> AsyncIterator[StreamEvent]:
        """Yield events as they arrive. Drains what is queued, then stops on close()."""
        while not self.exhausted:
            try:
                event = await self.next_event(timeout=0.5)
            except asyncio.CancelledError:
                break
            if event is not None:
                yield event

    def drain(self) -> list[StreamEvent]:
        """Return and remove everything currently queued."""
        events = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    def close(self) -> None:
        """Stop the consumer loop permanently."""
        self._closed = True
        self._closed_event.set()


class StreamHub:
    """Session id → event bus."""

    def __init__(self, maxsize: int = 5000) -> None:
        self._maxsize = maxsize
        self._buses: dict[str, SessionEventBus] = {}

    def bus(self, session_id: str) -> SessionEventBus:
        bus = self._buses.get(session_id)
        if bus is None or bus.closed:
            bus = SessionEventBus(session_id, maxsize=self._maxsize)
            self._buses[session_id] = bus
        return bus

    def has_bus(self, session_id: str) -> bool:
        return session_id in self._buses

    async def publish(self, session_id: str, event: StreamEvent | dict[str, Any]) -> bool:
        """Publish a typed event or a raw event dict to *session_id*.

        A raw dict that does not parse is published as an ``error`` event
        instead, so the consumer learns about it.
        """
        if isinstance(event, dict):
            try:
                event = dict_to_event(event)
            except ValueError as exc:
                logger.warning("Session %s: invalid event dropped: %s", session_id, exc)
                event = ErrorEvent(error=f"Invalid event: {exc}", kind="invalid")
        return await self.bus(session_id).emit(event)

    def make_callback(self):
        """Return the async ``(session_id, event)`` callback producers publish through."""
        return self.publish

    def close(self, session_id: str) -> None:
        bus = self._buses.pop(session_id, None)
        if bus is not None:
            bus.close()

    def close_all(self) -> None:
        for session_id in list(self._buses):
            self.close(session_id)
