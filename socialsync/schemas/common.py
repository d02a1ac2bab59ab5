from datetime import datetime
from typing import Annotated, Any

from bson import ObjectId
from pydantic import BeforeValidator, AfterValidator

from socialsync.utils.time import ensure_utc


def _stringify_id(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    return value


DocumentId = Annotated[str, BeforeValidator(_stringify_id)]
UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]
