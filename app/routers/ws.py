# app/routers/ws.py
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool

from app.core.database import SessionLocal
from app.core.security import jwt_manager
from app.models.quiz import Quiz
from app.models.user import User
from app.services.broadcaster import quiz_room, students_room, teachers_room, user_room
from app.services.quiz import LOBBY_ROOM

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["WebSocket"])


def _authenticate(token: Optional[str]) -> Optional[User]:
    if not token:
        return None
    try:
        payload = jwt_manager.verify_token(token, "access")
    except HTTPException:
        return None

    db = SessionLocal()
    try:
        user = db.query(User).filter(User.id == payload.get("user_id")).first()
        if user is None or not user.is_active:
            return None
        db.expunge(user)
        return user
    finally:
        db.close()


def _quiz_exists(quiz_id: int) -> bool:
    db = SessionLocal()
    try:
        return db.query(Quiz.id).filter(Quiz.id == quiz_id).first() is not None
    finally:
        db.close()


async def _listen(websocket: WebSocket) -> None:
    """Keep the socket open; clients only send keep-alive pings."""
    while True:
        message = await websocket.receive_text()
        if message == "ping":
            await websocket.send_json({"event": "pong", "data": {}})


@router.websocket("/quizzes")
async def lobby_socket(websocket: WebSocket, token: Optional[str] = Query(None)):
    """Receives quizCreated announcements."""
    user = await run_in_threadpool(_authenticate, token)
    if user is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    broadcaster = websocket.app.state.runtime.broadcaster
    await broadcaster.connect(websocket, [LOBBY_ROOM])
    try:
        await _listen(websocket)
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.disconnect(websocket)


@router.websocket("/quizzes/{quiz_id}")
async def quiz_socket(websocket: WebSocket, quiz_id: int, token: Optional[str] = Query(None)):
    """
    Joins the quiz room, the teachers or students room depending on the
    caller's role, and a private room for events addressed to the caller.
    """
    # Both lookups hit the database; keep them off the event loop
    user = await run_in_threadpool(_authenticate, token)
    if user is None or not await run_in_threadpool(_quiz_exists, quiz_id):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    role_room = teachers_room(quiz_id) if user.is_teacher else students_room(quiz_id)
    rooms = [quiz_room(quiz_id), role_room, user_room(quiz_id, user.id)]

    broadcaster = websocket.app.state.runtime.broadcaster
    await broadcaster.connect(websocket, rooms)
    logger.info(f"User {user.id} connected to quiz {quiz_id} socket")
    try:
        await _listen(websocket)
    except WebSocketDisconnect:
        logger.info(f"User {user.id} disconnected from quiz {quiz_id} socket")
    finally:
        broadcaster.disconnect(websocket)
