import logging
import math
import random
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.decorator import transactional
from app.core.exceptions import NotFoundError, StateConflictError, ValidationError
from app.models.course import Course
from app.models.course_grade import CourseGradeColumnQuiz
from app.models.question import LEVEL_EASY, LEVEL_HARD, LEVEL_MEDIUM, LO, Answer, Question
from app.models.quiz import (
    QUIZ_MODES,
    QUIZ_STATUS_ACTIVE,
    QUIZ_STATUS_PENDING,
    Quiz,
    QuizQuestion,
)
from app.models.quiz_result import QuizResult, UserQuestionHistory
from app.schemas.quiz import InlineQuestion, QuizCreate, QuizResponse, QuizUpdate
from app.services.broadcaster import Broadcaster, quiz_room
from app.services.question_selector import QuestionSelector
from app.services.realtime_registry import RealtimeRegistry
from app.services.session_store import SessionStore, list_key
from app.utils.clock import as_utc

logger = logging.getLogger(__name__)

LOBBY_ROOM = "quizzes"
CODE_EXERCISE_TYPE = 4
REQUIRED_CODE_CONFIG = (
    "allow_multiple_submissions",
    "show_test_results",
    "enable_ai_analysis",
    "time_limit_per_question",
)
DIFFICULTY_LEVELS = {"easy": LEVEL_EASY, "medium": LEVEL_MEDIUM, "hard": LEVEL_HARD}
SORT_OPTIONS = {
    "newest": Quiz.created_at.desc(),
    "oldest": Quiz.created_at.asc(),
    "name": Quiz.name.asc(),
}


def serialize_question(question: Question) -> dict:
    """Student-safe view of a question: correctness flags are never included."""
    return {
        "question_id": question.id,
        "question_text": question.question_text,
        "question_type": question.question_type,
        "difficulty": question.difficulty,
        "lo_id": question.lo_id,
        "answers": [
            {"answer_id": answer.id, "answer_text": answer.answer_text}
            for answer in question.answers
        ],
    }


def serialize_quiz(quiz: Quiz) -> dict:
    return QuizResponse.model_validate(quiz).model_dump(mode="json")


def quiz_questions(quiz: Quiz) -> List[Question]:
    return [qq.question for qq in quiz.quiz_questions]


def replace_quiz_questions(db: Session, quiz: Quiz, questions: List[Question]) -> None:
    quiz.quiz_questions.clear()
    db.flush()
    for index, question in enumerate(questions):
        quiz.quiz_questions.append(
            QuizQuestion(question_id=question.id, order_index=index, question=question)
        )
    db.flush()


def mode_flags(quiz_mode: str, gamification_enabled: Optional[bool]) -> dict:
    if quiz_mode not in QUIZ_MODES:
        raise ValidationError(f"quiz_mode must be one of {', '.join(QUIZ_MODES)}")
    if quiz_mode == "assessment" and gamification_enabled:
        raise ValidationError("Assessment quizzes cannot enable gamification")
    practice = quiz_mode == "practice"
    return {
        "gamification_enabled": practice,
        "real_time_leaderboard_enabled": practice,
    }


class QuizService:
    def __init__(
        self,
        db: Session,
        sessions: SessionStore,
        registry: RealtimeRegistry,
        broadcaster: Broadcaster,
        rng: Optional[random.Random] = None,
    ):
        self.db = db
        self.sessions = sessions
        self.registry = registry
        self.broadcaster = broadcaster
        self.rng = rng or random.Random()

    # ==================== Helpers ====================

    def get_quiz_or_404(self, quiz_id: int) -> Quiz:
        quiz = self.db.query(Quiz).filter(Quiz.id == quiz_id).first()
        if not quiz:
            raise NotFoundError("Quiz not found")
        return quiz

    def generate_pin(self, max_attempts: int = 1000) -> str:
        """Rejection-sample 6-digit PINs until one is unused."""
        for _ in range(max_attempts):
            pin = str(self.rng.randint(100000, 999999))
            exists = self.db.query(Quiz.id).filter(Quiz.pin == pin).first()
            if not exists:
                return pin
        raise StateConflictError("Could not allocate a unique quiz PIN")

    def _resolve_course(self, course_id: Optional[int], subject_id: Optional[int]) -> Course:
        if course_id is not None:
            course = self.db.query(Course).filter(Course.id == course_id).first()
            if not course:
                raise NotFoundError("Course not found")
            return course
        if subject_id is not None:
            logger.warning(
                f"subject_id={subject_id} used to create a quiz; subject_id is deprecated, send course_id"
            )
            course = (
                self.db.query(Course)
                .filter(Course.subject_id == subject_id)
                .order_by(Course.id)
                .first()
            )
            if not course:
                raise NotFoundError("No course found for the given subject")
            return course
        raise ValidationError("course_id is required")

    def _create_inline_questions(self, inline: List[InlineQuestion]) -> List[Question]:
        created = []
        for item in inline:
            if not item.answers or not any(a.is_correct for a in item.answers):
                raise ValidationError(
                    f"Inline question '{item.question_text[:40]}' needs at least one correct answer"
                )
            if not self.db.query(LO.id).filter(LO.id == item.lo_id).first():
                raise NotFoundError(f"LO {item.lo_id} not found")
            level_id = item.level_id or DIFFICULTY_LEVELS.get(
                (item.difficulty or "medium").lower(), LEVEL_MEDIUM
            )
            question = Question(
                question_text=item.question_text,
                explanation=item.explanation,
                question_type=item.question_type,
                lo_id=item.lo_id,
                level_id=level_id,
            )
            question.answers = [
                Answer(answer_text=a.answer_text, is_correct=a.is_correct) for a in item.answers
            ]
            self.db.add(question)
            created.append(question)
        self.db.flush()
        return created

    def _questions_by_ids(self, question_ids: List[int]) -> List[Question]:
        unique_ids = list(dict.fromkeys(question_ids))
        found = {q.id: q for q in self.db.query(Question).filter(Question.id.in_(unique_ids)).all()}
        missing = [qid for qid in unique_ids if qid not in found]
        if missing:
            raise NotFoundError(f"Questions not found: {missing}")
        return [found[qid] for qid in unique_ids]

    def _questions_by_criteria(self, quiz: Quiz, course: Course, criteria, type_filter) -> List[Question]:
        lo_ids = criteria.lo_ids
        if not lo_ids:
            if course.subject_id is None:
                raise ValidationError("lo_ids are required when the course has no subject")
            lo_ids = [
                row[0]
                for row in self.db.query(LO.id).filter(LO.subject_id == course.subject_id).all()
            ]
            if not lo_ids:
                raise ValidationError("The course subject has no learning outcomes")
        selector = QuestionSelector(self.db)
        return selector.select_questions(
            lo_ids=lo_ids,
            total=criteria.total_questions,
            ratio=criteria.difficulty_ratio.model_dump(),
            type_filter=criteria.type if criteria.type is not None else type_filter,
            seed=quiz.id,
        )

    # ==================== Create ====================

    @transactional
    def create_quiz(self, quiz_in: QuizCreate) -> dict:
        course = self._resolve_course(quiz_in.course_id, quiz_in.subject_id)
        if not quiz_in.name or not quiz_in.name.strip():
            raise ValidationError("Quiz name is required")
        if quiz_in.duration is not None and quiz_in.duration <= 0:
            raise ValidationError("Duration must be greater than 0")

        flags = mode_flags(quiz_in.quiz_mode, quiz_in.gamification_enabled)

        type_filter = None
        code_config = None
        if quiz_in.quiz_mode == "code_practice":
            config = quiz_in.code_config.model_dump() if quiz_in.code_config else {}
            missing = [key for key in REQUIRED_CODE_CONFIG if config.get(key) is None]
            if missing:
                raise ValidationError(f"code_config is missing: {', '.join(missing)}")
            if not (quiz_in.question_ids or quiz_in.inline_questions or quiz_in.question_criteria):
                raise ValidationError(
                    "Code practice quizzes need question_ids, inline_questions or question_criteria"
                )
            code_config = config
            type_filter = CODE_EXERCISE_TYPE

        quiz = Quiz(
            course_id=course.id,
            name=quiz_in.name.strip(),
            duration=quiz_in.duration,
            pin=self.generate_pin(),
            status=QUIZ_STATUS_PENDING,
            quiz_mode=quiz_in.quiz_mode,
            avatar_system_enabled=(
                True if quiz_in.avatar_system_enabled is None else quiz_in.avatar_system_enabled
            ),
            code_config=code_config,
            start_time=quiz_in.start_time,
            end_time=quiz_in.end_time,
            **flags,
        )
        self.db.add(quiz)
        self.db.flush()

        if quiz_in.inline_questions:
            questions = self._create_inline_questions(quiz_in.inline_questions)
        elif quiz_in.question_ids:
            questions = self._questions_by_ids(quiz_in.question_ids)
        elif quiz_in.question_criteria:
            questions = self._questions_by_criteria(
                quiz, course, quiz_in.question_criteria, type_filter
            )
        else:
            questions = []

        replace_quiz_questions(self.db, quiz, questions)
        self.db.refresh(quiz)

        data = serialize_quiz(quiz)
        data["questions"] = [serialize_question(q) for q in questions]
        self._after_create(quiz.id, data)
        logger.info(f"Quiz {quiz.id} created with {len(questions)} questions (pin {quiz.pin})")
        return data

    def _after_create(self, quiz_id: int, data: dict) -> None:
        try:
            self.sessions.invalidate_lists()
            self.sessions.cache_questions(quiz_id, data["questions"])
        except Exception as e:
            logger.warning(f"Cache refresh after creating quiz {quiz_id} failed: {e}")
        self.broadcaster.emit(LOBBY_ROOM, "quizCreated", {"quiz": data})

    # ==================== Read ====================

    def get_quiz(self, quiz_id: int) -> dict:
        quiz = self.get_quiz_or_404(quiz_id)
        data = serialize_quiz(quiz)
        data["questions"] = [serialize_question(q) for q in quiz_questions(quiz)]
        return data

    def list_quizzes(
        self,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
        course_id: Optional[int] = None,
        search: Optional[str] = None,
        sort: Optional[str] = None,
    ) -> dict:
        key = list_key(page, limit, status, course_id, search, sort)
        try:
            cached = self.sessions.get_list(key)
        except Exception as e:
            logger.warning(f"Quiz list cache unavailable: {e}")
            cached = None
        if cached is not None:
            return cached

        query = self.db.query(Quiz)
        if status:
            query = query.filter(Quiz.status == status)
        if course_id is not None:
            query = query.filter(Quiz.course_id == course_id)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(Quiz.name.ilike(pattern), Quiz.pin.ilike(pattern)))

        total = query.count()
        offset = (page - 1) * limit
        quizzes = (
            query.order_by(SORT_OPTIONS.get(sort or "newest", Quiz.created_at.desc()), Quiz.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

        # Pagination metadata
        total_pages = math.ceil(total / limit) if limit > 0 else 0
        result = {
            "quizzes": [serialize_quiz(q) for q in quizzes],
            "total": total,
            "page": page,
            "size": limit,
            "totalPages": total_pages,
        }
        try:
            self.sessions.cache_list(key, result)
        except Exception as e:
            logger.warning(f"Failed to cache quiz list {key}: {e}")
        return result

    # ==================== Update / Delete ====================

    @transactional
    def update_quiz(self, quiz_id: int, quiz_in: QuizUpdate) -> dict:
        quiz = self.get_quiz_or_404(quiz_id)
        if quiz.status == QUIZ_STATUS_ACTIVE:
            raise StateConflictError(
                "An active quiz cannot be edited",
                hint="end the quiz first or wait for it to finish",
            )

        changes = quiz_in.model_dump(exclude_unset=True)
        if "course_id" in changes:
            self._resolve_course(changes["course_id"], None)
        if "name" in changes and not (changes["name"] or "").strip():
            raise ValidationError("Quiz name cannot be empty")
        if "duration" in changes and changes["duration"] is not None and changes["duration"] <= 0:
            raise ValidationError("Duration must be greater than 0")

        start = as_utc(changes.get("start_time", quiz.start_time))
        end = as_utc(changes.get("end_time", quiz.end_time))
        if start and end and end <= start:
            raise ValidationError("end_time must be after start_time")

        quiz_mode = changes.pop("quiz_mode", None) or quiz.quiz_mode
        gamification = changes.pop("gamification_enabled", None)
        changes.pop("real_time_leaderboard_enabled", None)
        if quiz_mode != quiz.quiz_mode or gamification is not None:
            for field, value in mode_flags(quiz_mode, gamification).items():
                setattr(quiz, field, value)
            quiz.quiz_mode = quiz_mode

        for field, value in changes.items():
            setattr(quiz, field, value.strip() if field == "name" else value)

        self.db.flush()
        self.db.refresh(quiz)
        data = serialize_quiz(quiz)

        try:
            self.sessions.invalidate_quiz(quiz.id)
        except Exception as e:
            logger.warning(f"Cache invalidation after updating quiz {quiz.id} failed: {e}")
        self.broadcaster.emit(quiz_room(quiz.id), "quizUpdated", {"quiz": data})
        return data

    @transactional
    def delete_quiz(self, quiz_id: int) -> bool:
        quiz = self.get_quiz_or_404(quiz_id)
        if quiz.status == QUIZ_STATUS_ACTIVE:
            raise StateConflictError(
                "An active quiz cannot be deleted", hint="end the quiz before deleting it"
            )

        self.db.query(UserQuestionHistory).filter(UserQuestionHistory.quiz_id == quiz_id).delete(
            synchronize_session=False
        )
        self.db.query(QuizResult).filter(QuizResult.quiz_id == quiz_id).delete(
            synchronize_session=False
        )
        self.db.query(CourseGradeColumnQuiz).filter(
            CourseGradeColumnQuiz.quiz_id == quiz_id
        ).delete(synchronize_session=False)
        self.db.delete(quiz)
        self.db.flush()

        try:
            self.sessions.invalidate_quiz(quiz_id)
            self.registry.clear_quiz(quiz_id)
        except Exception as e:
            logger.warning(f"Cleanup after deleting quiz {quiz_id} failed: {e}")
        logger.info(f"Quiz {quiz_id} deleted")
        return True
