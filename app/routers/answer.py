# app/routers/answer.py
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import get_db
from app.core.dependencies import get_current_user, get_runtime
from app.core.limiter import limiter
from app.models.user import User
from app.schemas.answer import RealtimeAnswerSubmit
from app.schemas.common import ApiResponse, ok
from app.services.runtime import QuizRuntime

router = APIRouter(
    prefix="/answers",
    tags=["Answers"],
)


@router.post("/realtime", response_model=ApiResponse)
@limiter.limit(settings.answer_rate_limit)
def submit_realtime_answer(
    request: Request,
    answer_in: RealtimeAnswerSubmit,
    db: Session = Depends(get_db),
    runtime: QuizRuntime = Depends(get_runtime),
    current_user: User = Depends(get_current_user),
):
    """
    Score one answer of the authenticated participant.

    Response time is measured from the server-side question start; the
    ``userId`` in the body is ignored in favour of the token.
    """
    data = runtime.session_service(db).submit_answer(current_user, answer_in)
    return ok(data, "Correct answer" if data["isCorrect"] else "Incorrect answer")
