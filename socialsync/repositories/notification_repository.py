from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING

from socialsync.models.notification import NotificationDocument, NotificationType
from socialsync.repositories.base import BaseRepository, normalize, to_object_id
from socialsync.utils.time import to_storage, utcnow


class NotificationRepository(BaseRepository):

    collection_name = "notifications"

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("recipient_id", ASCENDING), ("created_at", DESCENDING)])

    async def create(
        self,
        recipient_id: str,
        actor_id: str,
        type: NotificationType,
        payload: Dict[str, Any],
        post_id: Optional[str] = None,
        comment_id: Optional[str] = None,
    ) -> NotificationDocument:
        doc: NotificationDocument = {
            "recipient_id": recipient_id,
            "actor_id": actor_id,
            "type": type,
            "payload": payload,
            "post_id": post_id,
            "comment_id": comment_id,
            "created_at": to_storage(utcnow()),
            "read_at": None,
        }
        async with self._writing("Creating notification"):
            result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        await self._emit("insert", new=doc)
        return doc

    async def list_recent(self, recipient_id: str, limit: int = 30) -> List[NotificationDocument]:
        async with self._reading("Loading notifications"):
            cur = self.collection.find({"recipient_id": recipient_id}).sort(
                [("created_at", DESCENDING), ("_id", DESCENDING)]
            ).limit(limit)
            items = await cur.to_list(length=limit)
        return [normalize(it) for it in items]

    async def mark_read(self, recipient_id: str, ids: List[str], at: Optional[datetime] = None) -> List[NotificationDocument]:
        """Set read_at on the unread rows among ``ids``. Returns the rows that changed."""
        oids = [oid for oid in (to_object_id(i) for i in ids) if oid is not None]
        if not oids:
            return []
        return await self._mark({"_id": {"$in": oids}, "recipient_id": recipient_id, "read_at": None}, at)

    async def mark_all_read(self, recipient_id: str, at: Optional[datetime] = None) -> List[NotificationDocument]:
        return await self._mark({"recipient_id": recipient_id, "read_at": None}, at)

    async def delete(self, notification_id: str) -> bool:
        oid = to_object_id(notification_id)
        if oid is None:
            return False
        async with self._writing("Deleting notification"):
            doc = await self.collection.find_one_and_delete({"_id": oid})
        if not doc:
            return False
        await self._emit("delete", old=normalize(doc))
        return True

    async def _mark(self, query: Dict[str, Any], at: Optional[datetime]) -> List[NotificationDocument]:
        read_at = to_storage(at or utcnow())
        async with self._reading("Loading unread notifications"):
            targets = await self.collection.find(query, {"_id": 1}).to_list(length=None)
        if not targets:
            return []
        target_ids = [t["_id"] for t in targets]
        async with self._writing("Marking notifications read"):
            await self.collection.update_many({"_id": {"$in": target_ids}, "read_at": None}, {"$set": {"read_at": read_at}})
            cur = self.collection.find({"_id": {"$in": target_ids}})
            updated = [normalize(it) for it in await cur.to_list(length=None)]
        for doc in updated:
            await self._emit("update", new=doc)
        return updated
