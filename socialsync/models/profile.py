from datetime import datetime
from typing import Optional, TypedDict


class ProfileDocument(TypedDict, total=False):
    _id: str
    nickname: Optional[str]
    avatar_url: Optional[str]


class FollowDocument(TypedDict, total=False):
    _id: str
    follower_id: str
    following_id: str
    created_at: datetime
