from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from levelkeeper.schemas.progression import ProgressionRecord
from levelkeeper.services.notifications import NotificationSink


@dataclass(slots=True)
class LiveSession:
    record: ProgressionRecord
    sink: NotificationSink


class ProgressionCache:
    """Live records for attached sessions, with one lock per session id.

    ``get``/``put``/``remove``/``snapshot`` are plain dict operations and never
    suspend. Ordering between operations on the same session comes from
    ``hold``; sessions never wait on each other's locks.
    """

    def __init__(self) -> None:
        self._entries: dict[str, LiveSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: Counter[str] = Counter()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._entries

    def session_ids(self) -> list[str]:
        return list(self._entries)

    def get(self, session_id: str) -> ProgressionRecord | None:
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        return entry.record

    def put(self, session_id: str, record: ProgressionRecord, sink: NotificationSink) -> None:
        self._entries[session_id] = LiveSession(record=record, sink=sink)

    def remove(self, session_id: str) -> ProgressionRecord | None:
        entry = self._entries.pop(session_id, None)
        if entry is None:
            return None
        return entry.record

    def snapshot(self) -> dict[str, ProgressionRecord]:
        return {session_id: entry.record for session_id, entry in self._entries.items()}

    @asynccontextmanager
    async def hold(self, session_id: str) -> AsyncIterator[LiveSession | None]:
        """Serialize work on ``session_id``; yields its live entry or ``None``."""
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        self._holders[session_id] += 1
        try:
            async with lock:
                yield self._entries.get(session_id)
        finally:
            self._holders[session_id] -= 1
            if self._holders[session_id] <= 0:
                del self._holders[session_id]
                if session_id not in self._entries:
                    self._locks.pop(session_id, None)
