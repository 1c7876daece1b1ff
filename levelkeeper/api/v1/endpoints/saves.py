from fastapi import APIRouter

from levelkeeper.api.deps import Manager
from levelkeeper.schemas.progression import SaveResponse

router = APIRouter(prefix="/saves", tags=["saves"])


@router.post("", response_model=SaveResponse)
async def save_progression(manager: Manager) -> SaveResponse:
    records_saved = await manager.save_all()
    return SaveResponse(records_saved=records_saved, sessions_attached=manager.attached_count)
