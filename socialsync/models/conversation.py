from datetime import datetime
from typing import Literal, Optional, TypedDict


ConversationKind = Literal["direct", "group"]


class ConversationDocument(TypedDict, total=False):
    _id: str
    kind: ConversationKind
    # group only; direct conversations take their name from the other member
    name: Optional[str]
    created_by: str
    created_at: datetime
    updated_at: datetime


class ConversationMemberDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    user_id: str
    joined_at: datetime
