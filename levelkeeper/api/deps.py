from typing import Annotated

from fastapi import Depends, Request

from levelkeeper.core.config import Settings
from levelkeeper.services.mining_rewards import MiningRewardHook
from levelkeeper.services.progression_event_broker import ProgressionEventBroker
from levelkeeper.services.progression_manager import ProgressionManager


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_manager(request: Request) -> ProgressionManager:
    return request.app.state.progression_manager


def get_broker(request: Request) -> ProgressionEventBroker:
    return request.app.state.progression_event_broker


def get_mining_hook(request: Request) -> MiningRewardHook:
    return request.app.state.mining_reward_hook


AppSettings = Annotated[Settings, Depends(get_app_settings)]
Manager = Annotated[ProgressionManager, Depends(get_manager)]
Broker = Annotated[ProgressionEventBroker, Depends(get_broker)]
MiningHook = Annotated[MiningRewardHook, Depends(get_mining_hook)]
