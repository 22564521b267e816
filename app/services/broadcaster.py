import asyncio
import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, Optional, Set

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)


def quiz_room(quiz_id: int) -> str:
    return f"quiz:{quiz_id}"


def teachers_room(quiz_id: int) -> str:
    return f"quiz:{quiz_id}:teachers"


def students_room(quiz_id: int) -> str:
    return f"quiz:{quiz_id}:students"


def user_room(quiz_id: int, user_id: int) -> str:
    return f"quiz:{quiz_id}:{user_id}"


class Broadcaster:
    """Port the quiz lifecycle uses to push room-scoped events to clients."""

    def emit(self, room: str, event: str, payload: dict) -> None:
        raise NotImplementedError


class WebSocketBroadcaster(Broadcaster):
    """
    Room fan-out over FastAPI websockets.

    ``emit`` is called from sync request handlers running in the threadpool,
    so sends are handed to the event loop captured at startup.
    """

    def __init__(self):
        self.rooms: Dict[str, Set[WebSocket]] = defaultdict(set)
        self.loop: Optional[asyncio.AbstractEventLoop] = None

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self.loop = loop

    async def connect(self, websocket: WebSocket, rooms: Iterable[str]) -> None:
        await websocket.accept()
        if self.loop is None:
            self.loop = asyncio.get_running_loop()
        for room in rooms:
            self.rooms[room].add(websocket)
        logger.debug(f"WebSocket joined rooms: {list(rooms)}")

    def disconnect(self, websocket: WebSocket) -> None:
        for room in list(self.rooms):
            self.rooms[room].discard(websocket)
            if not self.rooms[room]:
                del self.rooms[room]

    async def _send(self, room: str, message: Dict[str, Any]) -> None:
        for websocket in list(self.rooms.get(room, ())):
            try:
                await websocket.send_json(message)
            except Exception as e:
                logger.warning(f"Dropping websocket from {room}: {e}")
                self.disconnect(websocket)

    def emit(self, room: str, event: str, payload: dict) -> None:
        if room not in self.rooms or self.loop is None:
            return
        message = {"event": event, "data": jsonable_encoder(payload)}
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self.loop:
            self.loop.create_task(self._send(room, message))
        else:
            asyncio.run_coroutine_threadsafe(self._send(room, message), self.loop)
