from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from socialsync.schemas.common import DocumentId, UtcDatetime


class Message(BaseModel):

    model_config = ConfigDict(populate_by_name=True)

    id: DocumentId = Field(alias="_id")
    conversation_id: DocumentId
    sender_id: str
    content: Optional[str] = None
    image_url: Optional[str] = None
    created_at: UtcDatetime
    read_at: Optional[UtcDatetime] = None
    client_message_id: Optional[str] = None
    # set on optimistic entries that have not been confirmed by the store yet
    pending: bool = False

    @model_validator(mode="after")
    def _has_body(self) -> "Message":
        if not self.content and not self.image_url:
            raise ValueError("Message needs content or an image")
        return self

    def is_unread_for(self, user_id: str) -> bool:
        return self.sender_id != user_id and self.read_at is None


class MessagePage(BaseModel):

    items: list[Message]
    has_more: bool
    next_cursor: Optional[str] = None
