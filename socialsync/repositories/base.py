import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import AutoReconnect, PyMongoError

from socialsync.errors import TransientNetworkError, WriteError
from socialsync.utils.realtime_bus import ChangeFeed


logger = logging.getLogger(__name__)


def to_object_id(value: Any) -> Optional[ObjectId]:
    if value is None:
        return None
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def normalize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    doc["_id"] = str(doc.get("_id"))
    return doc


class BaseRepository:

    collection_name: str = ""

    def __init__(self, db: AsyncIOMotorDatabase, feed: Optional[ChangeFeed] = None) -> None:
        self._db = db
        self._feed = feed

    @property
    def collection(self):
        return self._db[self.collection_name]

    async def _emit(self, event_type: str, new: Optional[Dict[str, Any]] = None, old: Optional[Dict[str, Any]] = None) -> None:
        if self._feed is None:
            return
        await self._feed.publish_change(self.collection_name, event_type, new=new, old=old)

    @asynccontextmanager
    async def _reading(self, what: str):
        try:
            yield
        except AutoReconnect as exc:
            raise TransientNetworkError(f"{what} failed: {exc}") from exc

    @asynccontextmanager
    async def _writing(self, what: str):
        try:
            yield
        except PyMongoError as exc:
            logger.error(f"{what} failed: {exc}")
            raise WriteError(f"{what} failed") from exc
