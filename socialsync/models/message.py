from datetime import datetime
from typing import Optional, TypedDict


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    sender_id: str
    content: Optional[str]
    image_url: Optional[str]
    created_at: datetime
    read_at: Optional[datetime]
    # client ack
    client_message_id: Optional[str]
