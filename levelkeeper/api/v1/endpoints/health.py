from fastapi import APIRouter

from levelkeeper.api.deps import Manager
from levelkeeper.schemas.progression import HealthRead

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthRead)
async def health(manager: Manager) -> HealthRead:
    load_error = manager.last_load_error
    return HealthRead(
        status="degraded" if load_error is not None else "ok",
        sessions_attached=manager.attached_count,
        records_stored=manager.stored_count,
        load_error=str(load_error) if load_error is not None else None,
    )
