# app/routers/quiz.py
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import get_db
from app.core.dependencies import get_current_teacher, get_current_user, get_runtime
from app.models.user import User
from app.schemas.common import ApiResponse, ok
from app.schemas.quiz import QuizCreate, QuizJoinRequest, QuizUpdate
from app.services.runtime import QuizRuntime

router = APIRouter(
    prefix="/quizzes",
    tags=["Quizzes"],
    responses={404: {"description": "Not found"}},
)


# ==================== Authoring ====================


@router.post("/", response_model=ApiResponse, status_code=status.HTTP_201_CREATED)
def create_quiz(
    quiz_in: QuizCreate,
    db: Session = Depends(get_db),
    runtime: QuizRuntime = Depends(get_runtime),
    current_teacher: User = Depends(get_current_teacher),
):
    """
    Create a quiz from explicit question ids, inline questions or selection
    criteria. Teacher only.
    """
    quiz = runtime.quiz_service(db).create_quiz(quiz_in)
    return ok(quiz, "Quiz created successfully")


@router.get("/", response_model=ApiResponse)
def list_quizzes(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    status: Optional[str] = Query(None),
    course_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None),
    sort: Optional[str] = Query(None, description="newest, oldest or name"),
    db: Session = Depends(get_db),
    runtime: QuizRuntime = Depends(get_runtime),
    current_user: User = Depends(get_current_user),
):
    data = runtime.quiz_service(db).list_quizzes(page, limit, status, course_id, search, sort)
    return ok(data)


@router.get("/{quiz_id}", response_model=ApiResponse)
def get_quiz(
    quiz_id: int,
    db: Session = Depends(get_db),
    runtime: QuizRuntime = Depends(get_runtime),
    current_user: User = Depends(get_current_user),
):
    return ok(runtime.quiz_service(db).get_quiz(quiz_id))


@router.put("/{quiz_id}", response_model=ApiResponse)
def update_quiz(
    quiz_id: int,
    quiz_in: QuizUpdate,
    db: Session = Depends(get_db),
    runtime: QuizRuntime = Depends(get_runtime),
    current_teacher: User = Depends(get_current_teacher),
):
    """Update quiz settings. Not allowed while the quiz is running."""
    quiz = runtime.quiz_service(db).update_quiz(quiz_id, quiz_in)
    return ok(quiz, "Quiz updated successfully")


@router.delete("/{quiz_id}", response_model=ApiResponse)
def delete_quiz(
    quiz_id: int,
    db: Session = Depends(get_db),
    runtime: QuizRuntime = Depends(get_runtime),
    current_teacher: User = Depends(get_current_teacher),
):
    runtime.quiz_service(db).delete_quiz(quiz_id)
    return ok(message="Quiz deleted successfully")


@router.post("/{quiz_id}/shuffle-questions", response_model=ApiResponse)
def shuffle_questions(
    quiz_id: int,
    db: Session = Depends(get_db),
    runtime: QuizRuntime = Depends(get_runtime),
    current_teacher: User = Depends(get_current_teacher),
):
    """Reselect the quiz questions with the same difficulty mix. Pending quizzes only."""
    data = runtime.session_service(db).shuffle_questions(quiz_id)
    return ok(data, "Questions shuffled successfully")


# ==================== Lifecycle ====================


@router.post("/{quiz_id}/start", response_model=ApiResponse)
def start_quiz(
    quiz_id: int,
    db: Session = Depends(get_db),
    runtime: QuizRuntime = Depends(get_runtime),
    current_teacher: User = Depends(get_current_teacher),
):
    data = runtime.session_service(db).start_quiz(quiz_id)
    return ok(data, "Quiz started")


@router.post("/{quiz_id}/end", response_model=ApiResponse)
def end_quiz(
    quiz_id: int,
    db: Session = Depends(get_db),
    runtime: QuizRuntime = Depends(get_runtime),
    current_teacher: User = Depends(get_current_teacher),
):
    """
    End an active quiz: live results are synced into durable results
    before the quiz is marked finished.
    """
    data = runtime.session_service(db).end_quiz(quiz_id)
    return ok(data, "Quiz ended")


@router.post("/{quiz_id}/join", response_model=ApiResponse)
def join_quiz(
    quiz_id: int,
    join_in: QuizJoinRequest,
    db: Session = Depends(get_db),
    runtime: QuizRuntime = Depends(get_runtime),
    current_user: User = Depends(get_current_user),
):
    data = runtime.session_service(db).join_quiz(quiz_id, current_user, join_in.pin)
    message = "Rejoined quiz" if data["reconnected"] else "Joined quiz"
    return ok(data, message)


@router.post("/{quiz_id}/leave", response_model=ApiResponse)
def leave_quiz(
    quiz_id: int,
    db: Session = Depends(get_db),
    runtime: QuizRuntime = Depends(get_runtime),
    current_user: User = Depends(get_current_user),
):
    runtime.session_service(db).leave_quiz(quiz_id, current_user)
    return ok(message="Left quiz")


@router.post("/{quiz_id}/participants/{user_id}/finalize", response_model=ApiResponse)
def finalize_participant(
    quiz_id: int,
    user_id: int,
    db: Session = Depends(get_db),
    runtime: QuizRuntime = Depends(get_runtime),
    current_teacher: User = Depends(get_current_teacher),
):
    """Write one participant's durable result now instead of at quiz end."""
    data = runtime.session_service(db).finalize_participant(quiz_id, user_id)
    return ok(data, "Participant finalized" if data["success"] else "Nothing to finalize")


# ==================== Results ====================


@router.get("/{quiz_id}/leaderboard", response_model=ApiResponse)
def get_leaderboard(
    quiz_id: int,
    db: Session = Depends(get_db),
    runtime: QuizRuntime = Depends(get_runtime),
    current_user: User = Depends(get_current_user),
):
    leaderboard = runtime.session_service(db).get_leaderboard(quiz_id)
    return ok({"quiz_id": quiz_id, "leaderboard": leaderboard})


@router.post("/{quiz_id}/show-leaderboard", response_model=ApiResponse)
def show_leaderboard(
    quiz_id: int,
    db: Session = Depends(get_db),
    runtime: QuizRuntime = Depends(get_runtime),
    current_teacher: User = Depends(get_current_teacher),
):
    data = runtime.session_service(db).show_leaderboard(quiz_id)
    return ok(data, "Leaderboard shown to students")


@router.get("/{quiz_id}/my-result", response_model=ApiResponse)
def get_my_result(
    quiz_id: int,
    db: Session = Depends(get_db),
    runtime: QuizRuntime = Depends(get_runtime),
    current_user: User = Depends(get_current_user),
):
    return ok(runtime.session_service(db).get_my_result(quiz_id, current_user))
