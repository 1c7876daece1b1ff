from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from levelkeeper.core.errors import InvalidAmountError, NotAttachedError, PersistenceIOError
from levelkeeper.schemas.progression import ProgressionRecord
from levelkeeper.services.leveling import LevelingPolicy
from levelkeeper.services.notifications import NotificationSink, NullNotificationSink
from levelkeeper.services.progression_cache import ProgressionCache
from levelkeeper.services.progression_store import JsonProgressionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GrantResult:
    record: ProgressionRecord
    amount_granted: int
    levels_gained: int


class ProgressionManager:
    """Single entry point for session progression.

    Owns the live cache and the in-memory snapshot of the durable store.
    Operations on one session run in a total order under that session's lock;
    disk I/O runs in a worker thread without holding any session lock.
    """

    def __init__(
        self,
        store: JsonProgressionStore,
        *,
        policy: LevelingPolicy | None = None,
        cache: ProgressionCache | None = None,
    ) -> None:
        self._store = store
        self.policy = policy or LevelingPolicy()
        self._cache = cache or ProgressionCache()
        self._stored: dict[str, ProgressionRecord] = {}
        self._save_lock = asyncio.Lock()
        self.last_load_error: PersistenceIOError | None = None

    @property
    def attached_count(self) -> int:
        return len(self._cache)

    @property
    def stored_count(self) -> int:
        return len(self._stored)

    def is_attached(self, session_id: str) -> bool:
        return session_id in self._cache

    def stored_record(self, session_id: str) -> ProgressionRecord | None:
        return self._stored.get(session_id)

    async def load(self) -> int:
        """Populate the store snapshot; an unreadable file counts as a first run."""
        try:
            records = await asyncio.to_thread(self._store.load)
        except PersistenceIOError as exc:
            logger.warning("Starting with empty progression store: %s", exc)
            self.last_load_error = exc
            records = {}
        else:
            self.last_load_error = None
        self._stored = dict(records)
        return len(self._stored)

    async def attach(
        self,
        session_id: str,
        sink: NotificationSink | None = None,
    ) -> ProgressionRecord:
        sink = sink or NullNotificationSink()
        async with self._cache.hold(session_id) as live:
            if live is not None:
                # Live record is fresher than the snapshot; only the sink changes.
                record = live.record
            else:
                stored = self._stored.get(session_id)
                if stored is None:
                    record = self.policy.default_record()
                else:
                    record = self.policy.normalize(stored)
            self._cache.put(session_id, record, sink)
            await self._notify_state_changed(session_id, sink, record)

        logger.info("Attached session %s at level %d", session_id, record.level)
        return record

    async def grant_points(self, session_id: str, amount: int) -> GrantResult:
        if amount < 0:
            raise InvalidAmountError(
                "Grant amount must not be negative",
                session_id=session_id,
                operation="grant_points",
            )

        async with self._cache.hold(session_id) as live:
            if live is None:
                raise NotAttachedError(
                    "Session is not attached",
                    session_id=session_id,
                    operation="grant_points",
                )
            if amount == 0:
                return GrantResult(record=live.record, amount_granted=0, levels_gained=0)

            record, levels_gained = self.policy.apply_delta(live.record, amount)
            live.record = record
            try:
                await live.sink.on_points_granted(record, amount, levels_gained)
            except Exception:
                logger.warning("Notification sink failed for session %s", session_id, exc_info=True)

        if levels_gained:
            logger.info(
                "Session %s gained %d level(s), now level %d",
                session_id,
                levels_gained,
                record.level,
            )
        return GrantResult(record=record, amount_granted=amount, levels_gained=levels_gained)

    async def reset_progress(self, session_id: str) -> ProgressionRecord:
        async with self._cache.hold(session_id) as live:
            if live is None:
                raise NotAttachedError(
                    "Session is not attached",
                    session_id=session_id,
                    operation="reset_progress",
                )
            record = self.policy.default_record()
            live.record = record
            self._stored[session_id] = record
            await self._notify_state_changed(session_id, live.sink, record)

        logger.info("Reset progression for session %s", session_id)
        return record

    async def set_level(self, session_id: str, level: int) -> ProgressionRecord:
        if level < 1:
            raise InvalidAmountError(
                "Level must be at least 1",
                session_id=session_id,
                operation="set_level",
            )

        async with self._cache.hold(session_id) as live:
            if live is None:
                raise NotAttachedError(
                    "Session is not attached",
                    session_id=session_id,
                    operation="set_level",
                )
            record = self.policy.record_for_level(level)
            live.record = record
            await self._notify_state_changed(session_id, live.sink, record)

        return record

    async def detach(self, session_id: str) -> ProgressionRecord:
        """Drop the live entry and fold its record into the store snapshot."""
        async with self._cache.hold(session_id) as live:
            if live is None:
                raise NotAttachedError(
                    "Session is not attached",
                    session_id=session_id,
                    operation="detach",
                )
            record = live.record
            self._cache.remove(session_id)
            self._stored[session_id] = record

        logger.info("Detached session %s at level %d", session_id, record.level)
        return record

    async def save_all(self) -> int:
        """Fold live records into the snapshot and write it to disk.

        Returns the number of records written.
        """
        async with self._save_lock:
            self._stored.update(self._cache.snapshot())
            snapshot = dict(self._stored)
            try:
                await asyncio.to_thread(self._store.save, snapshot)
            except PersistenceIOError as exc:
                logger.warning("Progression save failed, will retry on next save: %s", exc)
                raise
        return len(snapshot)

    async def autosave(self, interval: float) -> None:
        """Save every ``interval`` seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            try:
                await self.save_all()
            except PersistenceIOError:
                continue

    def get_record(self, session_id: str) -> ProgressionRecord | None:
        return self._cache.get(session_id)

    def get_level(self, session_id: str) -> int:
        record = self._cache.get(session_id)
        return record.level if record is not None else 0

    def get_current_points(self, session_id: str) -> int:
        record = self._cache.get(session_id)
        return record.current_points if record is not None else 0

    def get_points_to_next_level(self, session_id: str) -> int:
        record = self._cache.get(session_id)
        return record.points_to_next_level if record is not None else 0

    async def _notify_state_changed(
        self,
        session_id: str,
        sink: NotificationSink,
        record: ProgressionRecord,
    ) -> None:
        try:
            await sink.on_state_changed(record)
        except Exception:
            logger.warning("Notification sink failed for session %s", session_id, exc_info=True)
