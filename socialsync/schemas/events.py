from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


EventType = Literal["insert", "update", "delete"]


class ChangeEvent(BaseModel):
    """One row change as emitted by the realtime feed."""

    model_config = ConfigDict(populate_by_name=True)

    event_type: EventType = Field(alias="eventType")
    table: str
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None

    @property
    def record(self) -> Dict[str, Any]:
        if self.event_type == "delete":
            return self.old or {}
        return self.new or {}
