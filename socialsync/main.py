from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from socialsync.config import configure_logging
from socialsync.database.connection import close_mongo_connection, connect_to_mongo, get_database
from socialsync.errors import NotFoundError, TransientNetworkError, WriteError
from socialsync.repositories.conversation_repository import ConversationRepository, MemberRepository
from socialsync.repositories.follow_repository import FollowRepository
from socialsync.repositories.message_repository import MessageRepository
from socialsync.repositories.notification_repository import NotificationRepository
from socialsync.routers.conversations import router as conversations_router
from socialsync.routers.follows import router as follows_router
from socialsync.routers.notifications import router as notifications_router
from socialsync.routers.realtime import router as realtime_router


async def ensure_indexes() -> None:
    db = get_database()
    for repo in (
        ConversationRepository(db),
        MemberRepository(db),
        MessageRepository(db),
        NotificationRepository(db),
        FollowRepository(db),
    ):
        await repo.ensure_indexes()


@asynccontextmanager
async def lifespan(app: FastAPI):

    configure_logging()
    await connect_to_mongo()
    await ensure_indexes()
    try:
        yield
    finally:
        await close_mongo_connection()


app = FastAPI(title="socialsync", lifespan=lifespan)


app.include_router(conversations_router)
app.include_router(notifications_router)
app.include_router(follows_router)
app.include_router(realtime_router)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(WriteError)
async def write_error_handler(request: Request, exc: WriteError):
    return JSONResponse(status_code=503, content={"detail": str(exc), "retryable": True})


@app.exception_handler(TransientNetworkError)
async def transient_handler(request: Request, exc: TransientNetworkError):
    return JSONResponse(status_code=503, content={"detail": str(exc), "retryable": True})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.get("/")
async def root():

    db = get_database()
    collections = await db.list_collection_names()
    return {"message": "Connected to MongoDB!", "collections": collections}
