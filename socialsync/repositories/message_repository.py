from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ASCENDING, DESCENDING

from socialsync.models.message import MessageDocument
from socialsync.repositories.base import BaseRepository, normalize, to_object_id
from socialsync.utils.time import to_storage, utcnow


class MessageRepository(BaseRepository):

    collection_name = "messages"

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversation_id", ASCENDING), ("created_at", DESCENDING)])

    async def save_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: Optional[str],
        image_url: Optional[str] = None,
        client_message_id: Optional[str] = None,
    ) -> MessageDocument:
        doc: MessageDocument = {
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "content": content,
            "image_url": image_url,
            "created_at": to_storage(utcnow()),
            "read_at": None,
            "client_message_id": client_message_id,
        }
        async with self._writing("Saving message"):
            result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        await self._emit("insert", new=doc)
        return doc

    async def get_page(
        self,
        conversation_id: str,
        limit: int = 50,
        before: Optional[Tuple[datetime, str]] = None,
    ) -> Tuple[List[MessageDocument], bool]:
        """Newest ``limit`` messages older than ``before``, returned oldest first."""
        query: Dict[str, Any] = {"conversation_id": conversation_id}
        if before:
            ts, message_id = before
            ts = to_storage(ts)
            query["$or"] = [
                {"created_at": {"$lt": ts}},
                {"created_at": ts, "_id": {"$lt": to_object_id(message_id)}},
            ]
        sort = [("created_at", DESCENDING), ("_id", DESCENDING)]
        async with self._reading("Loading messages"):
            # one extra row tells us whether an older page exists
            cur = self.collection.find(query).sort(sort).limit(limit + 1)
            items = await cur.to_list(length=limit + 1)
        has_more = len(items) > limit
        items = [normalize(it) for it in items[:limit]]
        return list(reversed(items)), has_more

    async def get_after(self, conversation_id: str, since: datetime, after_id: Optional[str] = None) -> List[MessageDocument]:
        ts = to_storage(since)
        query: Dict[str, Any] = {"conversation_id": conversation_id}
        after_oid = to_object_id(after_id) if after_id else None
        if after_oid is not None:
            query["$or"] = [
                {"created_at": {"$gt": ts}},
                {"created_at": ts, "_id": {"$gt": after_oid}},
            ]
        else:
            query["created_at"] = {"$gt": ts}
        async with self._reading("Loading newer messages"):
            cur = self.collection.find(query).sort([("created_at", ASCENDING), ("_id", ASCENDING)])
            items = await cur.to_list(length=None)
        return [normalize(it) for it in items]

    async def get_latest(self, conversation_ids: List[str], scan: int = 100) -> Dict[str, MessageDocument]:
        if not conversation_ids:
            return {}
        sort = [("created_at", DESCENDING), ("_id", DESCENDING)]
        latest: Dict[str, MessageDocument] = {}
        async with self._reading("Loading last messages"):
            cur = self.collection.find({"conversation_id": {"$in": list(conversation_ids)}}).sort(sort).limit(scan)
            for it in await cur.to_list(length=scan):
                latest.setdefault(it["conversation_id"], normalize(it))
            # quiet conversations fall outside the scan window
            for conversation_id in conversation_ids:
                if conversation_id in latest:
                    continue
                doc = await self.collection.find_one({"conversation_id": conversation_id}, sort=sort)
                if doc:
                    latest[conversation_id] = normalize(doc)
        return latest

    async def count_unread(self, conversation_ids: List[str], user_id: str) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        async with self._reading("Counting unread messages"):
            for conversation_id in conversation_ids:
                counts[conversation_id] = await self.collection.count_documents(
                    {"conversation_id": conversation_id, "sender_id": {"$ne": user_id}, "read_at": None}
                )
        return counts

    async def mark_read(self, conversation_id: str, reader_id: str, at: Optional[datetime] = None) -> List[MessageDocument]:
        """Mark everything the reader has not sent and not yet read. Returns the rows that changed."""
        read_at = to_storage(at or utcnow())
        query: Dict[str, Any] = {"conversation_id": conversation_id, "sender_id": {"$ne": reader_id}, "read_at": None}
        async with self._reading("Loading unread messages"):
            targets = await self.collection.find(query, {"_id": 1}).to_list(length=None)
        if not targets:
            return []
        ids = [t["_id"] for t in targets]
        async with self._writing("Marking messages read"):
            await self.collection.update_many({"_id": {"$in": ids}, "read_at": None}, {"$set": {"read_at": read_at}})
            cur = self.collection.find({"_id": {"$in": ids}})
            updated = [normalize(it) for it in await cur.to_list(length=None)]
        for doc in updated:
            await self._emit("update", new=doc)
        return updated
