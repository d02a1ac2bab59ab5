from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from socialsync.schemas.common import DocumentId, UtcDatetime


class _Payload(BaseModel):

    model_config = ConfigDict(extra="ignore")

    actor_name: Optional[str] = None


class PostLikePayload(_Payload):

    post_id: Optional[str] = None


class PostCommentPayload(_Payload):

    post_id: Optional[str] = None
    comment_id: Optional[str] = None
    snippet: Optional[str] = None


class CommentReplyPayload(_Payload):

    post_id: Optional[str] = None
    comment_id: Optional[str] = None
    snippet: Optional[str] = None


class FollowPayload(_Payload):

    pass


class _NotificationBase(BaseModel):

    model_config = ConfigDict(populate_by_name=True)

    id: DocumentId = Field(alias="_id")
    recipient_id: str
    actor_id: str
    post_id: Optional[str] = None
    comment_id: Optional[str] = None
    created_at: UtcDatetime
    read_at: Optional[UtcDatetime] = None

    @property
    def is_unread(self) -> bool:
        return self.read_at is None


class PostLikeNotification(_NotificationBase):

    type: Literal["post_like"]
    payload: PostLikePayload = Field(default_factory=PostLikePayload)


class PostCommentNotification(_NotificationBase):

    type: Literal["post_comment"]
    payload: PostCommentPayload = Field(default_factory=PostCommentPayload)


class CommentReplyNotification(_NotificationBase):

    type: Literal["comment_reply"]
    payload: CommentReplyPayload = Field(default_factory=CommentReplyPayload)


class FollowNotification(_NotificationBase):

    type: Literal["follow"]
    payload: FollowPayload = Field(default_factory=FollowPayload)


Notification = Annotated[
    Union[PostLikeNotification, PostCommentNotification, CommentReplyNotification, FollowNotification],
    Field(discriminator="type"),
]

PAYLOAD_TYPES: Dict[str, type[_Payload]] = {
    "post_like": PostLikePayload,
    "post_comment": PostCommentPayload,
    "comment_reply": CommentReplyPayload,
    "follow": FollowPayload,
}

ACTION_LABELS: Dict[str, str] = {
    "post_like": "liked your post",
    "post_comment": "commented on your post",
    "comment_reply": "replied to your comment",
    "follow": "started following you",
}

_adapter: TypeAdapter = TypeAdapter(Notification)


def parse_notification(doc: Dict[str, Any]) -> Notification:
    return _adapter.validate_python(doc)


def dump_notification(notification: Notification) -> Dict[str, Any]:
    data = _adapter.dump_python(notification, mode="json")
    data["action"] = ACTION_LABELS[notification.type]
    return data


class MarkReadRequest(BaseModel):

    ids: list[str]
