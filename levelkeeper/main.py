import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from levelkeeper.api.v1.router import api_router
from levelkeeper.core.config import Settings, get_settings
from levelkeeper.core.errors import (
    InvalidAmountError,
    NotAttachedError,
    PersistenceIOError,
    ProgressionError,
)
from levelkeeper.core.logging_config import configure_logging
from levelkeeper.services.leveling import LevelingPolicy
from levelkeeper.services.mining_rewards import MiningRewardHook
from levelkeeper.services.progression_event_broker import ProgressionEventBroker
from levelkeeper.services.progression_manager import ProgressionManager
from levelkeeper.services.progression_store import JsonProgressionStore

logger = logging.getLogger(__name__)

_ERROR_STATUS: dict[type[ProgressionError], int] = {
    NotAttachedError: status.HTTP_409_CONFLICT,
    InvalidAmountError: status.HTTP_422_UNPROCESSABLE_CONTENT,
    PersistenceIOError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


async def _progression_error_handler(request: Request, exc: ProgressionError) -> JSONResponse:
    status_code = _ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "error": exc.to_dict()},
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    app_settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(app_settings.log_level)

        manager = ProgressionManager(
            JsonProgressionStore(app_settings.data_file),
            policy=LevelingPolicy(base=app_settings.points_base),
        )
        stored = await manager.load()
        logger.info("Progression store ready with %d records", stored)

        app.state.settings = app_settings
        app.state.progression_manager = manager
        app.state.progression_event_broker = ProgressionEventBroker()
        app.state.mining_reward_hook = MiningRewardHook(
            manager,
            points_per_block=app_settings.mining_points_per_block,
        )

        autosave_task: asyncio.Task[None] | None = None
        if app_settings.autosave_interval_seconds > 0:
            autosave_task = asyncio.create_task(
                manager.autosave(app_settings.autosave_interval_seconds)
            )

        yield

        if autosave_task is not None:
            autosave_task.cancel()
            with suppress(asyncio.CancelledError):
                await autosave_task
        try:
            await manager.save_all()
        except PersistenceIOError:
            logger.error("Progression could not be saved during shutdown")

    app = FastAPI(title=app_settings.app_name, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ProgressionError, _progression_error_handler)
    app.include_router(api_router, prefix=app_settings.api_v1_prefix)

    return app


app = create_app()
