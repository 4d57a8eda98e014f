from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import List, Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

# ENV is read straight from the process environment by log_status
load_dotenv()

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    database_url: str = Field(default="sqlite:///./rummy.db", alias="DATABASE_URL")
    storage_backend: Literal["sql", "memory"] = Field(default="sql", alias="STORAGE_BACKEND")
    snapshot_key_prefix: str = Field(default="rummy_game_state", alias="SNAPSHOT_KEY_PREFIX")
    origin: str = Field(default="", alias="ORIGIN")
    edit_latest_round_only: bool = Field(default=True, alias="EDIT_LATEST_ROUND_ONLY")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        extra = "ignore"

    def allowed_origins(self) -> List[str]:
        """
        Splits ORIGIN on commas, dropping blanks.
        Example: "https://rummy.example, https://www.rummy.example"
        """
        return ["http://localhost:5173"] + [x.strip() for x in self.origin.split(",") if x.strip()]

    def masked_database_url(self) -> str:
        if "@" not in self.database_url:
            return self.database_url
        scheme, _, rest = self.database_url.partition("://")
        host = rest.rsplit("@", 1)[-1]
        return f"{scheme}://***@{host}"

    def log_status(self) -> None:
        env_name = os.getenv("ENV", "unknown")
        logger.info(
            "Storage settings: backend=%s, database=%s, key_prefix=%s, env=%s",
            self.storage_backend,
            self.masked_database_url(),
            self.snapshot_key_prefix,
            env_name,
        )


@lru_cache()
def get_settings() -> Settings:
    settings = Settings()
    settings.log_status()
    return settings
