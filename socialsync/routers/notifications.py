from fastapi import APIRouter, Depends

from socialsync.repositories.notification_repository import NotificationRepository
from socialsync.schemas.notification import MarkReadRequest, dump_notification
from socialsync.services.notification_aggregator import NotificationAggregator
from socialsync.utils.dependencies import get_current_user, get_notification_repo


router = APIRouter(prefix="/notifications", tags=["notifications"])


def get_aggregator(current_user: dict = Depends(get_current_user), repo: NotificationRepository = Depends(get_notification_repo)) -> NotificationAggregator:
    return NotificationAggregator(current_user["_id"], repo)


def _state(aggregator: NotificationAggregator) -> dict:
    return {
        "items": [dump_notification(n) for n in aggregator.notifications],
        "unread_count": aggregator.unread_count,
    }


@router.get("")
async def list_notifications(aggregator: NotificationAggregator = Depends(get_aggregator)):
    await aggregator.fetch()
    return _state(aggregator)


@router.post("/read")
async def mark_read(body: MarkReadRequest, aggregator: NotificationAggregator = Depends(get_aggregator)):
    await aggregator.fetch()
    updated = await aggregator.mark_read(body.ids)
    return {"updated": updated, **_state(aggregator)}


@router.post("/read-all")
async def mark_all_read(aggregator: NotificationAggregator = Depends(get_aggregator)):
    await aggregator.fetch()
    updated = await aggregator.mark_all_read()
    return {"updated": updated, **_state(aggregator)}
