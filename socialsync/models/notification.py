from datetime import datetime
from typing import Any, Dict, Literal, Optional, TypedDict


NotificationType = Literal["post_like", "post_comment", "comment_reply", "follow"]


class NotificationDocument(TypedDict, total=False):
    _id: str
    recipient_id: str
    actor_id: str
    type: NotificationType
    payload: Dict[str, Any]
    post_id: Optional[str]
    comment_id: Optional[str]
    created_at: datetime
    read_at: Optional[datetime]
