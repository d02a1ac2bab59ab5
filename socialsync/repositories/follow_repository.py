from typing import List

from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError

from socialsync.models.profile import FollowDocument
from socialsync.repositories.base import BaseRepository, normalize
from socialsync.utils.time import to_storage, utcnow


class FollowRepository(BaseRepository):

    collection_name = "follows"

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("follower_id", ASCENDING), ("following_id", ASCENDING)], unique=True)
        await self.collection.create_index([("following_id", ASCENDING)])

    async def create_follow(self, follower_id: str, following_id: str) -> bool:
        if await self.is_following(follower_id, following_id):
            return False
        doc: FollowDocument = {
            "follower_id": follower_id,
            "following_id": following_id,
            "created_at": to_storage(utcnow()),
        }
        async with self._writing("Creating follow"):
            try:
                result = await self.collection.insert_one(doc)
            except DuplicateKeyError:
                return False
        doc["_id"] = str(result.inserted_id)
        await self._emit("insert", new=doc)
        return True

    async def delete_follow(self, follower_id: str, following_id: str) -> bool:
        async with self._writing("Deleting follow"):
            doc = await self.collection.find_one_and_delete({"follower_id": follower_id, "following_id": following_id})
        if not doc:
            return False
        await self._emit("delete", old=normalize(doc))
        return True

    async def is_following(self, follower_id: str, following_id: str) -> bool:
        async with self._reading("Checking follow"):
            doc = await self.collection.find_one({"follower_id": follower_id, "following_id": following_id})
        return doc is not None

    async def list_following_ids(self, user_id: str) -> List[str]:
        async with self._reading("Listing following"):
            items = await self.collection.find({"follower_id": user_id}).sort("created_at", ASCENDING).to_list(length=None)
        return [it["following_id"] for it in items]

    async def list_follower_ids(self, user_id: str) -> List[str]:
        async with self._reading("Listing followers"):
            items = await self.collection.find({"following_id": user_id}).sort("created_at", ASCENDING).to_list(length=None)
        return [it["follower_id"] for it in items]
