import logging
from collections import defaultdict
from typing import Any, DefaultDict, Dict, Set

from fastapi import WebSocket, WebSocketDisconnect


logger = logging.getLogger(__name__)


class ConnectionManager:
    """Sync sockets per user. A user may hold several (one per device or tab)."""

    def __init__(self) -> None:
        self._sockets: DefaultDict[str, Set[WebSocket]] = defaultdict(set)

    async def connect(self, user_id: str, websocket: WebSocket) -> int:
        await websocket.accept()
        self._sockets[user_id].add(websocket)
        count = len(self._sockets[user_id])
        logger.info(f"{user_id} connected ({count} open)")
        return count

    def disconnect(self, user_id: str, websocket: WebSocket) -> int:
        sockets = self._sockets.get(user_id)
        if sockets is None:
            return 0
        sockets.discard(websocket)
        if not sockets:
            del self._sockets[user_id]
            return 0
        return len(sockets)

    def connection_count(self, user_id: str) -> int:
        return len(self._sockets.get(user_id, ()))

    async def send_json(self, websocket: WebSocket, payload: Dict[str, Any]) -> bool:
        """Push one frame. A socket that went away is reported, not raised."""
        try:
            await websocket.send_json(payload)
        except (WebSocketDisconnect, RuntimeError) as exc:
            # starlette raises RuntimeError once the close frame was sent
            logger.debug(f"Dropping {payload.get('type')} frame for a closed socket: {exc}")
            return False
        return True
