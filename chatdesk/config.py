import os
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel


class Settings(BaseModel):

    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_db: str = "chatdesk"
    redis_url: Optional[str] = None
    admin_token: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            mongodb_url=os.getenv("MONGODB_URL", "mongodb://localhost:27017"),
            mongodb_db=os.getenv("MONGODB_DB", "chatdesk"),
            redis_url=os.getenv("REDIS_URL") or None,
            admin_token=os.getenv("ADMIN_TOKEN") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
