import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import StreamingResponse

from levelkeeper.api.deps import AppSettings, Broker, Manager, MiningHook
from levelkeeper.core.errors import PersistenceIOError
from levelkeeper.schemas.progression import (
    DetachResponse,
    GrantPointsRequest,
    GrantPointsResponse,
    MiningEventRequest,
    MiningEventResponse,
    ProgressionRead,
    ProgressionRecord,
    SetLevelRequest,
)
from levelkeeper.services.notifications import BrokerNotificationSink
from levelkeeper.services.progression_manager import GrantResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/progression", tags=["progression"])


def _map_progression(session_id: str, record: ProgressionRecord) -> ProgressionRead:
    return ProgressionRead(
        session_id=session_id,
        level=record.level,
        current_points=record.current_points,
        points_to_next_level=record.points_to_next_level,
        progress=record.progress,
    )


def _map_grant(session_id: str, result: GrantResult) -> GrantPointsResponse:
    return GrantPointsResponse(
        progression=_map_progression(session_id, result.record),
        amount_granted=result.amount_granted,
        levels_gained=result.levels_gained,
    )


def _format_sse_event(event_name: str, payload: dict[str, Any]) -> str:
    return f"event: {event_name}\ndata: {json.dumps(payload, separators=(',', ':'))}\n\n"


@router.post("/{session_id}/attach", response_model=ProgressionRead)
async def attach_session(session_id: str, manager: Manager, broker: Broker) -> ProgressionRead:
    record = await manager.attach(session_id, BrokerNotificationSink(broker, session_id))
    return _map_progression(session_id, record)


@router.post("/{session_id}/detach", response_model=DetachResponse)
async def detach_session(
    session_id: str,
    manager: Manager,
    broker: Broker,
    settings: AppSettings,
) -> DetachResponse:
    record = await manager.detach(session_id)
    broker.forget(session_id)

    saved = False
    if settings.save_on_detach:
        try:
            await manager.save_all()
            saved = True
        except PersistenceIOError as exc:
            # Record is already in the snapshot; the next save picks it up.
            logger.warning("Save after detaching session %s failed: %s", session_id, exc)

    return DetachResponse(progression=_map_progression(session_id, record), saved=saved)


@router.get("/{session_id}", response_model=ProgressionRead)
async def get_progression(session_id: str, manager: Manager) -> ProgressionRead:
    record = manager.get_record(session_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not attached")
    return _map_progression(session_id, record)


@router.post("/{session_id}/grant", response_model=GrantPointsResponse)
async def grant_points(
    session_id: str,
    payload: GrantPointsRequest,
    manager: Manager,
    settings: AppSettings,
) -> GrantPointsResponse:
    amount = payload.amount if payload.amount is not None else settings.default_grant_amount
    result = await manager.grant_points(session_id, amount)
    return _map_grant(session_id, result)


@router.post("/{session_id}/reset", response_model=ProgressionRead)
async def reset_progression(session_id: str, manager: Manager) -> ProgressionRead:
    record = await manager.reset_progress(session_id)
    return _map_progression(session_id, record)


@router.put("/{session_id}/level", response_model=ProgressionRead)
async def set_level(session_id: str, payload: SetLevelRequest, manager: Manager) -> ProgressionRead:
    record = await manager.set_level(session_id, payload.level)
    return _map_progression(session_id, record)


@router.post("/{session_id}/mining", response_model=MiningEventResponse)
async def report_block_broken(
    session_id: str,
    payload: MiningEventRequest,
    hook: MiningHook,
) -> MiningEventResponse:
    result = await hook.on_block_broken(session_id, payload.block_id, payload.item_id)
    if result is None:
        return MiningEventResponse(rewarded=False)
    return MiningEventResponse(rewarded=True, grant=_map_grant(session_id, result))


@router.get("/{session_id}/stream")
async def stream_progression(
    session_id: str,
    request: Request,
    manager: Manager,
    broker: Broker,
    settings: AppSettings,
) -> StreamingResponse:
    if not manager.is_attached(session_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not attached")

    keepalive = settings.stream_keepalive_seconds

    async def stream() -> AsyncIterator[str]:
        async with broker.subscribe(session_id) as queue:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    payload = await asyncio.wait_for(queue.get(), timeout=keepalive)
                except TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                if payload["change_type"] == "snapshot":
                    yield _format_sse_event("progression_snapshot", payload)
                else:
                    yield _format_sse_event("progression_updated", payload)

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
