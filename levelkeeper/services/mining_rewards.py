from __future__ import annotations

from collections.abc import Iterable

from levelkeeper.core.errors import NotAttachedError
from levelkeeper.services.progression_manager import GrantResult, ProgressionManager

MINEABLE_BLOCKS = ("Stone", "Rock", "Dirt", "Cobblestone", "Granite", "Sandstone", "Ore")
PICKAXE_ITEMS = ("Pickaxe", "Pick")


def _matches_any(value: str, fragments: Iterable[str]) -> bool:
    lowered = value.lower()
    return any(fragment.lower() in lowered for fragment in fragments)


class MiningRewardHook:
    """Grants points when an attached session breaks rock or dirt with a pickaxe."""

    def __init__(
        self,
        manager: ProgressionManager,
        *,
        points_per_block: int = 1,
        mineable_blocks: Iterable[str] = MINEABLE_BLOCKS,
        pickaxe_items: Iterable[str] = PICKAXE_ITEMS,
    ) -> None:
        self._manager = manager
        self.points_per_block = points_per_block
        self.mineable_blocks = tuple(mineable_blocks)
        self.pickaxe_items = tuple(pickaxe_items)

    def is_rewarded(self, block_id: str, item_id: str | None) -> bool:
        if not _matches_any(block_id, self.mineable_blocks):
            return False
        if not item_id:
            return False
        return _matches_any(item_id, self.pickaxe_items)

    async def on_block_broken(
        self,
        session_id: str,
        block_id: str,
        item_id: str | None,
    ) -> GrantResult | None:
        if not self.is_rewarded(block_id, item_id):
            return None
        try:
            return await self._manager.grant_points(session_id, self.points_per_block)
        except NotAttachedError:
            # World events can arrive for sessions that are not tracked; they earn nothing.
            return None
