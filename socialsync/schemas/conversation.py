from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from socialsync.schemas.common import DocumentId, UtcDatetime
from socialsync.schemas.message import Message


GROUP_ICON = "group"


class ConversationSummary(BaseModel):

    model_config = ConfigDict(populate_by_name=True)

    id: DocumentId
    kind: Literal["direct", "group"]
    name: str
    avatar_url: Optional[str] = None
    icon: Optional[str] = None
    member_ids: List[str] = Field(default_factory=list)
    other_member_id: Optional[str] = None
    last_message: Optional[Message] = None
    unread_count: int = 0
    updated_at: UtcDatetime

    @property
    def is_group(self) -> bool:
        return self.kind == "group"

    @property
    def activity_at(self) -> datetime:
        if self.last_message and self.last_message.created_at > self.updated_at:
            return self.last_message.created_at
        return self.updated_at


class DirectConversationCreate(BaseModel):

    user_id: str


class GroupConversationCreate(BaseModel):

    name: str = Field(min_length=1)
    member_ids: List[str] = Field(min_length=1)


class MemberAdd(BaseModel):

    user_id: str
