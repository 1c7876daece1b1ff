from __future__ import annotations

from typing import Any, Protocol

from levelkeeper.schemas.progression import ProgressionRecord
from levelkeeper.services.progression_event_broker import ProgressionEventBroker

LEVEL_UP_COLOR = "#fbbf24"
POINTS_GAINED_COLOR = "#4ade80"


class NotificationSink(Protocol):
    """Presentation-layer callbacks invoked by the progression manager."""

    async def on_state_changed(self, record: ProgressionRecord) -> None:
        """Baseline or explicit refresh; carries no gain semantics."""

    async def on_points_granted(
        self,
        record: ProgressionRecord,
        amount_granted: int,
        levels_gained: int,
    ) -> None:
        """Incremental refresh; ``levels_gained >= 1`` means a level-up render."""


class NullNotificationSink:
    async def on_state_changed(self, record: ProgressionRecord) -> None:
        return None

    async def on_points_granted(
        self,
        record: ProgressionRecord,
        amount_granted: int,
        levels_gained: int,
    ) -> None:
        return None


def _record_payload(record: ProgressionRecord) -> dict[str, Any]:
    return {
        "level": record.level,
        "current_points": record.current_points,
        "points_to_next_level": record.points_to_next_level,
        "progress": record.progress,
    }


class BrokerNotificationSink:
    """Publishes progression changes for one session to the event broker."""

    def __init__(self, broker: ProgressionEventBroker, session_id: str) -> None:
        self._broker = broker
        self.session_id = session_id

    async def on_state_changed(self, record: ProgressionRecord) -> None:
        await self._broker.publish(
            self.session_id,
            {
                "change_type": "state_changed",
                "session_id": self.session_id,
                "progression": _record_payload(record),
            },
        )

    async def on_points_granted(
        self,
        record: ProgressionRecord,
        amount_granted: int,
        levels_gained: int,
    ) -> None:
        if levels_gained > 0:
            change_type = "level_up"
            popup = {"text": f"LEVEL UP! {record.level}", "color": LEVEL_UP_COLOR}
        else:
            change_type = "points_granted"
            popup = {"text": f"+{amount_granted} XP", "color": POINTS_GAINED_COLOR}

        await self._broker.publish(
            self.session_id,
            {
                "change_type": change_type,
                "session_id": self.session_id,
                "amount_granted": amount_granted,
                "levels_gained": levels_gained,
                "popup": popup,
                "progression": _record_payload(record),
            },
        )
