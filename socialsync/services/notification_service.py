import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from socialsync.errors import WriteError
from socialsync.repositories.notification_repository import NotificationRepository
from socialsync.schemas.notification import PAYLOAD_TYPES


logger = logging.getLogger(__name__)


class NotificationService:
    """Creates notifications for other users' actions. Never notifies the actor."""

    def __init__(self, notification_repo: NotificationRepository) -> None:
        self._repo = notification_repo

    async def notify_user(
        self,
        recipient_id: Optional[str],
        actor_id: Optional[str],
        type: str,
        payload: Optional[Dict[str, Any]] = None,
        post_id: Optional[str] = None,
        comment_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        if not recipient_id or not actor_id:
            return None
        if recipient_id == actor_id:
            return None
        payload_type = PAYLOAD_TYPES.get(type)
        if payload_type is None:
            raise ValueError(f"Unknown notification type: {type}")
        try:
            body = payload_type.model_validate(payload or {}).model_dump(exclude_none=True)
        except ValidationError as exc:
            raise ValueError(f"Invalid {type} payload: {exc}") from exc

        try:
            return await self._repo.create(
                recipient_id=recipient_id,
                actor_id=actor_id,
                type=type,
                payload=body,
                post_id=post_id,
                comment_id=comment_id,
            )
        except WriteError as exc:
            # the action that triggered it already succeeded
            logger.error(f"Error creating notification for {recipient_id}: {exc}")
            return None
