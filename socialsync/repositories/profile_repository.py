from typing import Dict, List, Optional

from socialsync.models.profile import ProfileDocument
from socialsync.repositories.base import BaseRepository


class ProfileRepository(BaseRepository):
    """Profiles are keyed by the identity provider's user id."""

    collection_name = "profiles"

    async def get(self, user_id: str) -> Optional[ProfileDocument]:
        async with self._reading("Loading profile"):
            return await self.collection.find_one({"_id": user_id})

    async def get_many(self, user_ids: List[str]) -> Dict[str, ProfileDocument]:
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}
        async with self._reading("Loading profiles"):
            cur = self.collection.find({"_id": {"$in": ids}})
            items = await cur.to_list(length=None)
        return {it["_id"]: it for it in items}

    async def upsert(self, user_id: str, nickname: Optional[str] = None, avatar_url: Optional[str] = None) -> ProfileDocument:
        doc: ProfileDocument = {"_id": user_id, "nickname": nickname, "avatar_url": avatar_url}
        async with self._writing("Saving profile"):
            await self.collection.update_one(
                {"_id": user_id},
                {"$set": {"nickname": nickname, "avatar_url": avatar_url}},
                upsert=True,
            )
        return doc
