from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

logger = logging.getLogger(__name__)

Payload = dict[str, Any]


class ProgressionEventBroker:
    """Fans out progression changes per session and remembers the latest state.

    Every published payload that carries a ``progression`` block becomes the
    session's current state. A new subscriber starts with that state as a
    ``snapshot`` event, so a stream never has to read the manager separately.
    Slow subscribers lose their oldest queued change first.

    All calls are expected on the event loop that owns the manager.
    """

    def __init__(self, *, queue_size: int = 64) -> None:
        self._queue_size = queue_size
        self._subscribers: dict[str, list[asyncio.Queue[Payload]]] = {}
        self._latest: dict[str, Payload] = {}

    def latest(self, session_id: str) -> Payload | None:
        progression = self._latest.get(session_id)
        if progression is None:
            return None
        return {"change_type": "snapshot", "session_id": session_id, "progression": dict(progression)}

    def forget(self, session_id: str) -> None:
        """Drop the remembered state once a session is detached."""
        self._latest.pop(session_id, None)

    def subscriber_count(self, session_id: str) -> int:
        return len(self._subscribers.get(session_id, ()))

    @asynccontextmanager
    async def subscribe(self, session_id: str) -> AsyncIterator[asyncio.Queue[Payload]]:
        queue: asyncio.Queue[Payload] = asyncio.Queue(maxsize=self._queue_size)
        snapshot = self.latest(session_id)
        if snapshot is not None:
            queue.put_nowait(snapshot)
        self._subscribers.setdefault(session_id, []).append(queue)
        try:
            yield queue
        finally:
            remaining = [item for item in self._subscribers.get(session_id, ()) if item is not queue]
            if remaining:
                self._subscribers[session_id] = remaining
            else:
                self._subscribers.pop(session_id, None)

    async def publish(self, session_id: str, payload: Payload) -> int:
        progression = payload.get("progression")
        if progression is not None:
            self._latest[session_id] = dict(progression)

        subscribers = self._subscribers.get(session_id, ())
        for queue in subscribers:
            self._offer(session_id, queue, payload)
        return len(subscribers)

    @staticmethod
    def _offer(session_id: str, queue: asyncio.Queue[Payload], payload: Payload) -> None:
        if queue.full():
            queue.get_nowait()
            logger.debug("Subscriber for session %s fell behind, dropped oldest change", session_id)
        queue.put_nowait(payload)
