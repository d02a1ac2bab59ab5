import logging
from typing import AsyncIterator, Dict, List, Optional

from socialsync.config import CONVERSATION_PREVIEW_SCAN
from socialsync.errors import DegenerateEntityError, MembershipWriteError, NotFoundError, WriteError
from socialsync.repositories.conversation_repository import ConversationRepository, MemberRepository
from socialsync.repositories.message_repository import MessageRepository
from socialsync.repositories.profile_repository import ProfileRepository
from socialsync.schemas.conversation import GROUP_ICON, ConversationSummary
from socialsync.schemas.message import Message
from socialsync.schemas.profile import Profile
from socialsync.services.resolver import DirectConversationResolver


logger = logging.getLogger(__name__)


def _ordered(summaries: List[ConversationSummary]) -> List[ConversationSummary]:
    return sorted(summaries, key=lambda s: (s.activity_at, s.id), reverse=True)


class ConversationStore:

    def __init__(
        self,
        conversation_repo: ConversationRepository,
        member_repo: MemberRepository,
        message_repo: MessageRepository,
        profile_repo: ProfileRepository,
    ) -> None:
        self._conversation_repo = conversation_repo
        self._member_repo = member_repo
        self._message_repo = message_repo
        self._profile_repo = profile_repo
        self.resolver = DirectConversationResolver(conversation_repo, member_repo)
        self._summaries: Dict[str, ConversationSummary] = {}

    @property
    def conversations(self) -> List[ConversationSummary]:
        return _ordered(list(self._summaries.values()))

    def get_cached(self, conversation_id: str) -> Optional[ConversationSummary]:
        return self._summaries.get(conversation_id)

    async def list_conversations(self, user_id: str) -> List[ConversationSummary]:
        result: List[ConversationSummary] = []
        async for result in self.iter_conversations(user_id):
            pass
        return result

    async def iter_conversations(self, user_id: str) -> AsyncIterator[List[ConversationSummary]]:
        """Yield a quick list with names only, then the list with members, previews and badges."""
        conversation_ids = await self._member_repo.list_conversation_ids(user_id)
        convos = await self._conversation_repo.list_by_ids(conversation_ids)
        if not convos:
            self._summaries = {}
            yield []
            return

        basic = [
            ConversationSummary(
                id=c["_id"],
                kind=c.get("kind", "direct"),
                name=c.get("name") or "Chat",
                icon=GROUP_ICON if c.get("kind") == "group" else None,
                updated_at=c["updated_at"],
            )
            for c in convos
        ]
        self._summaries = {s.id: s for s in basic}
        yield self.conversations

        ids = [c["_id"] for c in convos]
        members = await self._member_repo.list_for_conversations(ids)
        latest = await self._message_repo.get_latest(ids, scan=CONVERSATION_PREVIEW_SCAN)
        unread = await self._message_repo.count_unread(ids, user_id)

        other_ids: Dict[str, Optional[str]] = {}
        for c in convos:
            if c.get("kind") == "direct":
                other_ids[c["_id"]] = next((m for m in members.get(c["_id"], []) if m != user_id), None)
        profiles = await self._profile_repo.get_many([o for o in other_ids.values() if o])

        refined: List[ConversationSummary] = []
        for c in convos:
            cid = c["_id"]
            summary = self._summaries[cid]
            update = {
                "member_ids": members.get(cid, []),
                "last_message": Message.model_validate(latest[cid]) if cid in latest else None,
                "unread_count": unread.get(cid, 0),
            }
            if not summary.is_group:
                other_id = other_ids.get(cid)
                update["other_member_id"] = other_id
                if other_id is None:
                    logger.warning(f"Direct conversation {cid} has no other member: {DegenerateEntityError(cid)}")
                else:
                    profile = Profile.model_validate(profiles.get(other_id) or {"_id": other_id})
                    update["name"] = profile.display_name
                    update["avatar_url"] = profile.avatar_url
            refined.append(summary.model_copy(update=update))

        self._summaries = {s.id: s for s in refined}
        yield self.conversations

    async def create_direct_conversation(self, self_id: str, other_id: str) -> str:
        if not other_id or other_id == self_id:
            raise ValueError("A direct conversation needs another user")
        existing = await self.resolver.resolve(self_id, other_id)
        if existing:
            return existing

        convo = await self._conversation_repo.create("direct", created_by=self_id)
        conversation_id = convo["_id"]
        added: List[str] = []
        for user_id in (self_id, other_id):
            try:
                await self._member_repo.add(conversation_id, user_id)
            except WriteError as exc:
                await self._discard_degenerate(conversation_id, added)
                raise MembershipWriteError(conversation_id, user_id) from exc
            added.append(user_id)
        return conversation_id

    async def create_group_conversation(self, self_id: str, name: str, member_ids: List[str]) -> str:
        name = (name or "").strip()
        if not name:
            raise ValueError("Group name is required")
        others = [m for m in dict.fromkeys(member_ids) if m and m != self_id]
        if not others:
            raise ValueError("A group needs at least one other member")

        convo = await self._conversation_repo.create("group", created_by=self_id, name=name)
        conversation_id = convo["_id"]
        # creator first so the row-level rules let the creator add everyone else
        for user_id in [self_id] + others:
            try:
                await self._member_repo.add(conversation_id, user_id)
            except WriteError as exc:
                logger.warning(f"Group {conversation_id} left without all members: {DegenerateEntityError(user_id)}")
                raise MembershipWriteError(conversation_id, user_id) from exc
        return conversation_id

    async def add_member(self, conversation_id: str, user_id: str) -> bool:
        convo = await self._require(conversation_id)
        if convo.get("kind") == "direct":
            raise ValueError("Cannot add members to a direct conversation")
        added = await self._member_repo.add(conversation_id, user_id)
        if not added:
            logger.debug(f"{user_id} already in {conversation_id}")
        return added

    async def remove_member(self, conversation_id: str, user_id: str) -> bool:
        convo = await self._require(conversation_id)
        if convo.get("kind") == "direct":
            raise ValueError("Cannot remove members from a direct conversation")
        removed = await self._member_repo.remove(conversation_id, user_id)
        if removed and not await self._member_repo.list_members(conversation_id):
            logger.info(f"Group {conversation_id} has no members left; keeping it")
        return removed

    async def leave(self, conversation_id: str, user_id: str) -> bool:
        removed = await self.remove_member(conversation_id, user_id)
        self._summaries.pop(conversation_id, None)
        return removed

    async def touch(self, conversation_id: str) -> None:
        await self._conversation_repo.touch(conversation_id)

    async def get_members(self, conversation_id: str) -> List[Profile]:
        member_ids = await self._member_repo.list_members(conversation_id)
        profiles = await self._profile_repo.get_many(member_ids)
        return [Profile.model_validate(profiles.get(uid) or {"_id": uid}) for uid in member_ids]

    async def is_member(self, conversation_id: str, user_id: str) -> bool:
        return user_id in await self._member_repo.list_members(conversation_id)

    async def recount_unread(self, conversation_id: str, user_id: str) -> int:
        counts = await self._message_repo.count_unread([conversation_id], user_id)
        count = counts.get(conversation_id, 0)
        summary = self._summaries.get(conversation_id)
        if summary is not None:
            self._summaries[conversation_id] = summary.model_copy(update={"unread_count": count})
        return count

    def note_message(self, message: Message, user_id: str) -> None:
        """Fold a newly seen message into the cached summary without refetching."""
        summary = self._summaries.get(message.conversation_id)
        if summary is None:
            return
        last = summary.last_message
        if last is not None and (last.id == message.id or last.created_at > message.created_at):
            return
        update = {"last_message": message}
        if message.is_unread_for(user_id):
            update["unread_count"] = summary.unread_count + 1
        self._summaries[message.conversation_id] = summary.model_copy(update=update)

    async def _require(self, conversation_id: str) -> dict:
        convo = await self._conversation_repo.get(conversation_id)
        if convo is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        return convo

    async def _discard_degenerate(self, conversation_id: str, added: List[str]) -> None:
        try:
            for user_id in added:
                await self._member_repo.remove(conversation_id, user_id)
            await self._conversation_repo.delete(conversation_id)
        except WriteError as exc:
            # readers skip it: the resolver only accepts exactly-two-member conversations
            logger.warning(f"Could not clean up conversation {conversation_id}: {exc}")
