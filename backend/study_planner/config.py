import os
from functools import lru_cache
from typing import Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: Optional[str] = Field(None, alias="STUDY_PLANNER_DATABASE_URL")
    database_pool_size: int = Field(10, alias="STUDY_PLANNER_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="STUDY_PLANNER_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="STUDY_PLANNER_DATABASE_ECHO")
    timezone: str = Field("UTC", alias="STUDY_PLANNER_TIMEZONE")
    local_store_path: Optional[str] = Field(None, alias="STUDY_PLANNER_LOCAL_STORE_PATH")
    preferences_path: Optional[str] = Field(None, alias="STUDY_PLANNER_PREFERENCES_PATH")
    default_include_achievements_only: bool = Field(
        True,
        alias="STUDY_PLANNER_DEFAULT_ACHIEVEMENTS_ONLY",
    )
    host: str = Field("0.0.0.0", alias="STUDY_PLANNER_HOST")
    port: int = Field(8000, alias="STUDY_PLANNER_PORT")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[arg-type]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid planner configuration: {exc}") from exc
