from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from socialsync.schemas.common import DocumentId


class Profile(BaseModel):

    model_config = ConfigDict(populate_by_name=True)

    id: DocumentId = Field(alias="_id")
    nickname: Optional[str] = None
    avatar_url: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.nickname or "User"
