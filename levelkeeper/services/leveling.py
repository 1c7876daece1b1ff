from __future__ import annotations

from dataclasses import dataclass

from levelkeeper.core.errors import InvalidAmountError
from levelkeeper.schemas.progression import ProgressionRecord

DEFAULT_POINTS_BASE = 100


@dataclass(frozen=True, slots=True)
class LevelingPolicy:
    """Linear leveling curve: reaching ``level + 1`` costs ``base * level`` points."""

    base: int = DEFAULT_POINTS_BASE

    def __post_init__(self) -> None:
        if self.base < 1:
            raise ValueError("base must be positive")

    def threshold_for_level(self, level: int) -> int:
        if level < 1:
            raise ValueError("level must be at least 1")
        return self.base * level

    def default_record(self) -> ProgressionRecord:
        return self.record_for_level(1)

    def record_for_level(self, level: int) -> ProgressionRecord:
        return ProgressionRecord(
            level=level,
            current_points=0,
            points_to_next_level=self.threshold_for_level(level),
        )

    def apply_delta(self, record: ProgressionRecord, delta: int) -> tuple[ProgressionRecord, int]:
        """Add ``delta`` points and roll over every threshold it crosses.

        Returns the new record and the number of levels gained.
        """
        if delta < 0:
            raise InvalidAmountError("Points can only be granted, not removed", operation="apply_delta")
        return self._roll_over(record.level, record.current_points + delta, record.points_to_next_level)

    def normalize(self, record: ProgressionRecord) -> ProgressionRecord:
        """Re-derive the threshold from ``level`` and roll over any excess points.

        Used when restoring records written under a different base.
        """
        threshold = self.threshold_for_level(record.level)
        normalized, _ = self._roll_over(record.level, record.current_points, threshold)
        return normalized

    def _roll_over(self, level: int, points: int, threshold: int) -> tuple[ProgressionRecord, int]:
        levels_gained = 0
        while points >= threshold:
            points -= threshold
            level += 1
            levels_gained += 1
            threshold = self.threshold_for_level(level)

        return (
            ProgressionRecord(level=level, current_points=points, points_to_next_level=threshold),
            levels_gained,
        )
