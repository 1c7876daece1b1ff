from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LK_", env_file=".env", extra="ignore")

    app_name: str = "LevelKeeper API"
    environment: str = "development"
    api_v1_prefix: str = "/api/v1"
    log_level: str = "INFO"

    cors_origins: list[str] = ["http://localhost:5173"]

    data_file: str = "./data/xp_data.json"
    points_base: int = Field(default=100, ge=1)
    default_grant_amount: int = Field(default=100, ge=0)
    mining_points_per_block: int = Field(default=1, ge=0)

    save_on_detach: bool = True
    autosave_interval_seconds: float = Field(default=300.0, ge=0)
    stream_keepalive_seconds: float = Field(default=20.0, gt=0)


@lru_cache
def get_settings() -> Settings:
    return Settings()
