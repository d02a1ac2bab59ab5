from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from socialsync.models.conversation import ConversationDocument, ConversationKind, ConversationMemberDocument
from socialsync.repositories.base import BaseRepository, normalize, to_object_id
from socialsync.utils.time import to_storage, utcnow


class ConversationRepository(BaseRepository):

    collection_name = "conversations"

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("kind", ASCENDING)])
        await self.collection.create_index([("updated_at", DESCENDING)])

    async def create(self, kind: ConversationKind, created_by: str, name: Optional[str] = None) -> ConversationDocument:
        now = to_storage(utcnow())
        doc: ConversationDocument = {
            "kind": kind,
            "name": name,
            "created_by": created_by,
            "created_at": now,
            "updated_at": now,
        }
        async with self._writing("Creating conversation"):
            result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        await self._emit("insert", new=doc)
        return doc

    async def get(self, conversation_id: str) -> Optional[ConversationDocument]:
        oid = to_object_id(conversation_id)
        if oid is None:
            return None
        async with self._reading("Loading conversation"):
            doc = await self.collection.find_one({"_id": oid})
        return normalize(doc)

    async def list_by_ids(self, conversation_ids: List[str], kind: Optional[ConversationKind] = None) -> List[ConversationDocument]:
        oids = [oid for oid in (to_object_id(c) for c in conversation_ids) if oid is not None]
        if not oids:
            return []
        query: Dict[str, Any] = {"_id": {"$in": oids}}
        if kind:
            query["kind"] = kind
        async with self._reading("Listing conversations"):
            cur = self.collection.find(query).sort([("updated_at", DESCENDING), ("_id", DESCENDING)])
            items = await cur.to_list(length=None)
        return [normalize(it) for it in items]

    async def touch(self, conversation_id: str, at: Optional[datetime] = None) -> None:
        oid = to_object_id(conversation_id)
        if oid is None:
            return
        updated_at = to_storage(at or utcnow())
        async with self._writing("Updating conversation activity"):
            doc = await self.collection.find_one_and_update(
                {"_id": oid},
                {"$set": {"updated_at": updated_at}},
                return_document=ReturnDocument.AFTER,
            )
        if doc:
            await self._emit("update", new=normalize(doc))

    async def delete(self, conversation_id: str) -> bool:
        oid = to_object_id(conversation_id)
        if oid is None:
            return False
        async with self._writing("Deleting conversation"):
            result = await self.collection.delete_one({"_id": oid})
        if result.deleted_count:
            await self._emit("delete", old={"_id": conversation_id})
        return bool(result.deleted_count)


class MemberRepository(BaseRepository):

    collection_name = "conversation_members"

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversation_id", ASCENDING), ("user_id", ASCENDING)], unique=True)
        await self.collection.create_index([("user_id", ASCENDING)])

    async def add(self, conversation_id: str, user_id: str) -> bool:
        async with self._reading("Checking membership"):
            existing = await self.collection.find_one({"conversation_id": conversation_id, "user_id": user_id})
        if existing:
            return False
        doc: ConversationMemberDocument = {
            "conversation_id": conversation_id,
            "user_id": user_id,
            "joined_at": to_storage(utcnow()),
        }
        async with self._writing(f"Adding {user_id} to {conversation_id}"):
            try:
                result = await self.collection.insert_one(doc)
            except DuplicateKeyError:
                return False
        doc["_id"] = str(result.inserted_id)
        await self._emit("insert", new=doc)
        return True

    async def remove(self, conversation_id: str, user_id: str) -> bool:
        async with self._writing(f"Removing {user_id} from {conversation_id}"):
            doc = await self.collection.find_one_and_delete({"conversation_id": conversation_id, "user_id": user_id})
        if not doc:
            return False
        await self._emit("delete", old=normalize(doc))
        return True

    async def list_conversation_ids(self, user_id: str) -> List[str]:
        async with self._reading("Listing memberships"):
            cur = self.collection.find({"user_id": user_id})
            items = await cur.to_list(length=None)
        return [it["conversation_id"] for it in items]

    async def list_members(self, conversation_id: str) -> List[str]:
        members = await self.list_for_conversations([conversation_id])
        return members.get(conversation_id, [])

    async def list_for_conversations(self, conversation_ids: List[str]) -> Dict[str, List[str]]:
        if not conversation_ids:
            return {}
        async with self._reading("Listing conversation members"):
            cur = self.collection.find({"conversation_id": {"$in": list(conversation_ids)}}).sort(
                [("joined_at", ASCENDING), ("_id", ASCENDING)]
            )
            items = await cur.to_list(length=None)
        members: Dict[str, List[str]] = {}
        for it in items:
            members.setdefault(it["conversation_id"], []).append(it["user_id"])
        return members
