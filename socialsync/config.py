import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv


MESSAGES_PER_PAGE = 50
NOTIFICATION_LIMIT = 30
# how many recent messages to scan when attaching last-message previews
CONVERSATION_PREVIEW_SCAN = 100


@dataclass(frozen=True)
class Settings:

    mongo_url: str
    mongo_db: str
    redis_url: Optional[str]
    storage_dir: str
    storage_public_url: str
    log_level: str
    realtime_max_retries: int
    realtime_backoff_seconds: float


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    load_dotenv()
    return Settings(
        mongo_url=os.getenv("MONGO_URL", "mongodb://localhost:27017"),
        mongo_db=os.getenv("MONGO_DB", "socialsync"),
        redis_url=os.getenv("REDIS_URL") or None,
        storage_dir=os.getenv("STORAGE_DIR", "./storage"),
        storage_public_url=os.getenv("STORAGE_PUBLIC_URL", "http://localhost:8000/storage").rstrip("/"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        realtime_max_retries=int(os.getenv("REALTIME_MAX_RETRIES", "5")),
        realtime_backoff_seconds=float(os.getenv("REALTIME_BACKOFF_SECONDS", "0.5")),
    )


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=level or get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
