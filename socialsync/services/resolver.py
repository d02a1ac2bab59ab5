import logging
from typing import Optional

from socialsync.errors import DegenerateEntityError
from socialsync.repositories.conversation_repository import ConversationRepository, MemberRepository


logger = logging.getLogger(__name__)


class DirectConversationResolver:
    """Finds the existing direct conversation between two users, if any."""

    def __init__(self, conversation_repo: ConversationRepository, member_repo: MemberRepository) -> None:
        self._conversation_repo = conversation_repo
        self._member_repo = member_repo

    async def resolve(self, self_id: str, other_id: str) -> Optional[str]:
        if not self_id or not other_id or self_id == other_id:
            return None
        my_conversation_ids = await self._member_repo.list_conversation_ids(self_id)
        if not my_conversation_ids:
            return None
        direct = await self._conversation_repo.list_by_ids(my_conversation_ids, kind="direct")
        if not direct:
            return None
        members = await self._member_repo.list_for_conversations([c["_id"] for c in direct])

        pair = {self_id, other_id}
        candidates = []
        for convo in direct:
            member_ids = members.get(convo["_id"], [])
            if other_id not in member_ids:
                continue
            if len(member_ids) != 2 or set(member_ids) != pair:
                err = DegenerateEntityError(f"direct conversation {convo['_id']} has members {member_ids}")
                logger.warning(f"Skipping degenerate conversation: {err}")
                continue
            candidates.append(convo)

        if not candidates:
            return None
        if len(candidates) > 1:
            # concurrent first contact can leave duplicates; everyone settles on the oldest
            logger.warning(f"{len(candidates)} direct conversations exist for {sorted(pair)}")
        candidates.sort(key=lambda c: (c["created_at"], c["_id"]))
        return candidates[0]["_id"]
