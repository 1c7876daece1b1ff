from pydantic import BaseModel, ConfigDict, Field


class ProgressionRecord(BaseModel):
    """Snapshot of one session's progression.

    Instances are frozen; every change produces a new record so a reader
    always sees level and points from the same moment.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    level: int = Field(default=1, ge=1, alias="Level")
    current_points: int = Field(default=0, ge=0, alias="CurrentXP")
    points_to_next_level: int = Field(default=100, gt=0, alias="XPToNextLevel")

    @property
    def progress(self) -> float:
        return min(1.0, self.current_points / self.points_to_next_level)


class ProgressionRead(BaseModel):
    session_id: str
    level: int
    current_points: int
    points_to_next_level: int
    progress: float


class GrantPointsRequest(BaseModel):
    amount: int | None = Field(default=None, ge=0, le=10_000_000)


class SetLevelRequest(BaseModel):
    level: int = Field(ge=1, le=1_000_000)


class MiningEventRequest(BaseModel):
    block_id: str = Field(min_length=1, max_length=200)
    item_id: str | None = Field(default=None, max_length=200)


class GrantPointsResponse(BaseModel):
    progression: ProgressionRead
    amount_granted: int
    levels_gained: int


class MiningEventResponse(BaseModel):
    rewarded: bool
    grant: GrantPointsResponse | None = None


class DetachResponse(BaseModel):
    progression: ProgressionRead
    saved: bool


class SaveResponse(BaseModel):
    records_saved: int
    sessions_attached: int


class HealthRead(BaseModel):
    status: str
    sessions_attached: int
    records_stored: int
    load_error: str | None = None
