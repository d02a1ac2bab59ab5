from typing import List

from socialsync.repositories.follow_repository import FollowRepository
from socialsync.repositories.profile_repository import ProfileRepository
from socialsync.schemas.profile import Profile
from socialsync.services.notification_service import NotificationService


class FollowService:

    def __init__(
        self,
        follow_repo: FollowRepository,
        profile_repo: ProfileRepository,
        notifications: NotificationService,
    ) -> None:
        self.follow_repo = follow_repo
        self.profile_repo = profile_repo
        self.notifications = notifications

    async def follow(self, follower_id: str, target_id: str) -> bool:
        if follower_id == target_id:
            raise ValueError("Cannot follow yourself")
        created = await self.follow_repo.create_follow(follower_id, target_id)
        if not created:
            return False  # already following
        actor = await self.profile_repo.get(follower_id)
        await self.notifications.notify_user(
            recipient_id=target_id,
            actor_id=follower_id,
            type="follow",
            payload={"actor_name": (actor or {}).get("nickname")},
        )
        return True

    async def unfollow(self, follower_id: str, target_id: str) -> bool:
        return await self.follow_repo.delete_follow(follower_id, target_id)

    async def is_following(self, follower_id: str, target_id: str) -> bool:
        if follower_id == target_id:
            return False
        return await self.follow_repo.is_following(follower_id, target_id)

    async def list_following(self, user_id: str) -> List[Profile]:
        return await self._profiles(await self.follow_repo.list_following_ids(user_id))

    async def list_followers(self, user_id: str) -> List[Profile]:
        return await self._profiles(await self.follow_repo.list_follower_ids(user_id))

    async def _profiles(self, user_ids: List[str]) -> List[Profile]:
        profiles = await self.profile_repo.get_many(user_ids)
        return [Profile.model_validate(profiles.get(uid) or {"_id": uid}) for uid in user_ids]
