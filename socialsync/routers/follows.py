from fastapi import APIRouter, Depends, HTTPException

from socialsync.services.follow_service import FollowService
from socialsync.utils.dependencies import get_current_user, get_follow_service


router = APIRouter(prefix="/follows", tags=["follows"])


@router.get("/following")
async def following(current_user: dict = Depends(get_current_user), service: FollowService = Depends(get_follow_service)):
    profiles = await service.list_following(current_user["_id"])
    return {"following": [p.model_dump() for p in profiles]}


@router.get("/followers")
async def followers(current_user: dict = Depends(get_current_user), service: FollowService = Depends(get_follow_service)):
    profiles = await service.list_followers(current_user["_id"])
    return {"followers": [p.model_dump() for p in profiles]}


@router.get("/{target_user_id}")
async def is_following(target_user_id: str, current_user: dict = Depends(get_current_user), service: FollowService = Depends(get_follow_service)):
    return {"following": await service.is_following(current_user["_id"], target_user_id)}


@router.post("/{target_user_id}")
async def follow(target_user_id: str, current_user: dict = Depends(get_current_user), service: FollowService = Depends(get_follow_service)):
    if target_user_id == current_user["_id"]:
        raise HTTPException(status_code=400, detail="Cannot follow yourself.")
    created = await service.follow(current_user["_id"], target_user_id)
    return {"msg": "Followed" if created else "Already following"}


@router.delete("/{target_user_id}")
async def unfollow(target_user_id: str, current_user: dict = Depends(get_current_user), service: FollowService = Depends(get_follow_service)):
    ok = await service.unfollow(current_user["_id"], target_user_id)
    if not ok:
        raise HTTPException(status_code=404, detail="Not following.")
    return {"msg": "Unfollowed"}
