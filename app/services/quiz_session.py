import logging
import time
from datetime import timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.decorator import transactional
from app.core.exceptions import (
    ExternalStoreError,
    LockTimeoutError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from app.models.question import Answer
from app.models.quiz import (
    QUIZ_STATUS_ACTIVE,
    QUIZ_STATUS_FINISHED,
    QUIZ_STATUS_PENDING,
    Quiz,
)
from app.models.quiz_result import (
    RESULT_COMPLETED,
    RESULT_IN_PROGRESS,
    RESULT_TERMINATED,
    QuizResult,
)
from app.models.user import User
from app.schemas.answer import RealtimeAnswerSubmit
from app.services.broadcaster import (
    Broadcaster,
    quiz_room,
    students_room,
    teachers_room,
    user_room,
)
from app.services.question_selector import QuestionSelector
from app.services.quiz import (
    CODE_EXERCISE_TYPE,
    quiz_questions,
    replace_quiz_questions,
    serialize_question,
    serialize_quiz,
)
from app.services.quiz_finalizer import QuizFinalizer
from app.services.realtime_registry import (
    PARTICIPANT_COMPLETED,
    RealtimeRegistry,
    empty_participant,
    recent_results,
)
from app.services.scoring import DynamicScoringService
from app.services.session_store import SessionStore
from app.utils.clock import as_utc, now_ms, to_ms, utcnow

logger = logging.getLogger(__name__)

SCORE_BUCKETS = ((0, 2), (2, 4), (4, 6), (6, 8), (8, 10))


def normalized_score(participant: dict, total_questions: int) -> float:
    """Live score on the same 0-10 scale as durable results."""
    if not total_questions:
        return 0.0
    return round((participant.get("correct_answers") or 0) / total_questions * 10, 2)


def score_distribution(scores: List[float]) -> dict:
    distribution = {}
    for low, high in SCORE_BUCKETS:
        label = f"{low}-{high}"
        if high == SCORE_BUCKETS[-1][1]:
            distribution[label] = sum(1 for s in scores if low <= s <= high)
        else:
            distribution[label] = sum(1 for s in scores if low <= s < high)
    return distribution


class QuizSessionService:
    """
    Runs a quiz from start to finish: joins, answer intake, leaderboards,
    and the end-of-quiz sync into durable results.
    """

    def __init__(
        self,
        db: Session,
        registry: RealtimeRegistry,
        sessions: SessionStore,
        broadcaster: Broadcaster,
        finalizer: QuizFinalizer,
        completion_watcher=None,
    ):
        self.db = db
        self.registry = registry
        self.sessions = sessions
        self.broadcaster = broadcaster
        self.finalizer = finalizer
        self.completion_watcher = completion_watcher

    # ==================== Helpers ====================

    def _get_quiz(self, quiz_id: int) -> Quiz:
        quiz = self.db.query(Quiz).filter(Quiz.id == quiz_id).first()
        if not quiz:
            raise NotFoundError("Quiz not found")
        return quiz

    def _question_payloads(self, quiz: Quiz, refresh: bool = False) -> List[dict]:
        if not refresh:
            try:
                cached = self.sessions.get_questions(quiz.id)
            except ExternalStoreError as e:
                logger.warning(f"Question cache unavailable for quiz {quiz.id}: {e.message}")
                cached = None
            if cached:
                return cached

        questions = [serialize_question(q) for q in quiz_questions(quiz)]
        try:
            self.sessions.cache_questions(quiz.id, questions)
        except ExternalStoreError as e:
            logger.warning(f"Failed to cache questions for quiz {quiz.id}: {e.message}")
        return questions

    def _remaining_seconds(self, quiz: Quiz) -> int:
        end = as_utc(quiz.end_time)
        if quiz.status == QUIZ_STATUS_ACTIVE and end:
            return max(0, int((end - utcnow()).total_seconds()))
        return (quiz.duration or 0) * 60

    def _question_window_left(self, participant: dict) -> int:
        started = participant.get("question_started_at")
        window = settings.quiz_question_window_seconds
        if not started:
            return window
        elapsed = (now_ms() - started) / 1000
        return max(0, int(window - elapsed))

    def _state(self, quiz: Quiz) -> dict:
        return {
            "quiz_id": quiz.id,
            "status": quiz.status,
            "current_question_index": quiz.current_question_index,
            "start_time": quiz.start_time,
            "end_time": quiz.end_time,
        }

    # ==================== Start ====================

    @transactional
    def _activate(self, quiz_id: int) -> Quiz:
        quiz = self._get_quiz(quiz_id)
        if quiz.status != QUIZ_STATUS_PENDING:
            raise StateConflictError(
                f"Only pending quizzes can be started (quiz is {quiz.status})",
                hint="create a new quiz or reuse a pending one",
            )
        if not quiz.duration or quiz.duration <= 0:
            raise ValidationError("Quiz duration must be greater than 0 to start")
        if not quiz.quiz_questions:
            raise ValidationError("Quiz has no questions")

        now = utcnow()
        quiz.start_time = now
        quiz.end_time = now + timedelta(minutes=quiz.duration)
        quiz.status = QUIZ_STATUS_ACTIVE
        quiz.current_question_index = 0
        self.db.flush()
        return quiz

    def start_quiz(self, quiz_id: int) -> dict:
        quiz = self._activate(quiz_id)
        self.db.refresh(quiz)
        questions = self._question_payloads(quiz, refresh=True)
        first = questions[0]
        started_at = now_ms()

        self.sessions.cache_state(quiz.id, self._state(quiz))
        self.registry.set_current_question(quiz.id, 0, first["question_id"], started_at)

        # Participants who joined while pending start on the first question
        for user_id, participant in self.registry.list_participants(quiz.id).items():
            if participant.get("current_question_id") is None:
                self.registry.update_participant(
                    quiz.id,
                    user_id,
                    current_question_id=first["question_id"],
                    question_started_at=started_at,
                )

        payload = {
            "quiz_id": quiz.id,
            "question": first,
            "question_index": 0,
            "total_questions": len(questions),
            "start_time": quiz.start_time,
            "end_time": quiz.end_time,
            "duration": quiz.duration,
        }
        self.broadcaster.emit(quiz_room(quiz.id), "quizStarted", payload)
        logger.info(f"Quiz {quiz.id} started, ends at {quiz.end_time}")
        return {"quiz": serialize_quiz(quiz), **payload}

    # ==================== End ====================

    def end_quiz(self, quiz_id: int, reason: str = "manual") -> dict:
        """
        Sync the registry into durable results and mark the quiz finished.

        Sync and the active -> finished transition run under the quiz sync
        lock, so a second caller waits for the first and then gets a
        StateConflictError. A caller that cannot get the lock leaves the
        quiz active.
        """
        quiz = self._get_quiz(quiz_id)
        if quiz.status != QUIZ_STATUS_ACTIVE:
            raise StateConflictError(
                f"Only active quizzes can be ended (quiz is {quiz.status})",
                hint="start the quiz first" if quiz.status == QUIZ_STATUS_PENDING else None,
            )

        # Let in-flight answers land in the registry before reading it
        delay = settings.quiz_sync_delay_seconds
        if delay > 0:
            time.sleep(delay)

        try:
            with self.finalizer.sync_lock(quiz_id):
                # Whoever held the lock may have finished the quiz meanwhile
                self.db.expire_all()
                if self._get_quiz(quiz_id).status != QUIZ_STATUS_ACTIVE:
                    raise StateConflictError("Quiz has already ended")

                try:
                    sync = self.finalizer.sync_participants(quiz_id)
                except ExternalStoreError as e:
                    self.db.rollback()
                    logger.error(f"Registry unavailable while ending quiz {quiz_id}: {e.message}")
                    sync = {"skipped": True, "synced": 0}

                updated = (
                    self.db.query(Quiz)
                    .filter(Quiz.id == quiz_id, Quiz.status == QUIZ_STATUS_ACTIVE)
                    .update({Quiz.status: QUIZ_STATUS_FINISHED}, synchronize_session=False)
                )
                self.db.commit()
                if not updated:
                    raise StateConflictError("Quiz has already ended")
        except LockTimeoutError:
            raise StateConflictError(
                "Quiz results are still being synced",
                hint="retry ending the quiz in a few seconds",
            )

        self.db.expire_all()
        quiz = self._get_quiz(quiz_id)

        if self.completion_watcher is not None:
            self.completion_watcher.cancel(quiz_id)
        try:
            self.sessions.invalidate_quiz(quiz_id)
            self.registry.expire_quiz(quiz_id, settings.quiz_cache_ttl)
        except ExternalStoreError as e:
            logger.warning(f"Cache cleanup after ending quiz {quiz_id} failed: {e.message}")

        leaderboard = self.get_leaderboard(quiz_id)
        self.broadcaster.emit(
            quiz_room(quiz_id),
            "quizEnded",
            {"quiz_id": quiz_id, "reason": reason, "leaderboard": leaderboard},
        )
        logger.info(f"Quiz {quiz_id} ended ({reason}), {sync['synced']} results synced")
        return {
            "quiz": serialize_quiz(quiz),
            "reason": reason,
            "synced": sync["synced"],
            "leaderboard": leaderboard,
        }

    def end_expired_quizzes(self) -> List[int]:
        now = utcnow()
        active = (
            self.db.query(Quiz)
            .filter(Quiz.status == QUIZ_STATUS_ACTIVE, Quiz.end_time.isnot(None))
            .all()
        )
        expired = [q.id for q in active if as_utc(q.end_time) <= now]

        ended = []
        for quiz_id in expired:
            try:
                self.end_quiz(quiz_id, reason="expired")
                ended.append(quiz_id)
            except StateConflictError as e:
                logger.info(f"Sweep left quiz {quiz_id} alone: {e.message}")
        if ended:
            logger.info(f"Expiry sweep ended quizzes {ended}")
        return ended

    def all_participants_completed(self, quiz_id: int) -> bool:
        participants = self.registry.list_participants(quiz_id)
        return bool(participants) and all(
            p.get("status") == PARTICIPANT_COMPLETED for p in participants.values()
        )

    def end_if_all_completed(self, quiz_id: int) -> bool:
        quiz = self._get_quiz(quiz_id)
        if quiz.status != QUIZ_STATUS_ACTIVE:
            return False
        if not self.all_participants_completed(quiz_id):
            logger.debug(f"Quiz {quiz_id} still has participants in progress")
            return False
        try:
            self.end_quiz(quiz_id, reason="all_completed")
        except StateConflictError:
            return False
        return True

    # ==================== Join / Leave ====================

    @transactional
    def _ensure_result(self, quiz_id: int, user_id: int) -> QuizResult:
        result = (
            self.db.query(QuizResult)
            .filter(QuizResult.quiz_id == quiz_id, QuizResult.user_id == user_id)
            .first()
        )
        if result and result.status in (RESULT_COMPLETED, RESULT_TERMINATED):
            raise StateConflictError(
                "You have already finished this quiz",
                hint="view your result instead of joining again",
            )
        if not result:
            result = QuizResult(
                quiz_id=quiz_id, user_id=user_id, score=0, status=RESULT_IN_PROGRESS
            )
            self.db.add(result)
            self.db.flush()
        return result

    def join_quiz(self, quiz_id: int, user: User, pin: str) -> dict:
        quiz = self._get_quiz(quiz_id)
        if quiz.pin != pin:
            raise ValidationError("Invalid quiz PIN")
        if quiz.status not in (QUIZ_STATUS_PENDING, QUIZ_STATUS_ACTIVE):
            raise StateConflictError(
                f"Quiz is not open for joining (quiz is {quiz.status})",
                hint="only pending or active quizzes accept participants",
            )
        questions = self._question_payloads(quiz)
        if not questions:
            raise StateConflictError("Quiz has no questions")

        self._ensure_result(quiz.id, user.id)

        now = now_ms()
        participant = self.registry.get_participant(quiz.id, user.id)
        reconnected = participant is not None

        session = None
        if participant and participant.get("session_id"):
            session = self.sessions.get_session(participant["session_id"])
        if session is None:
            session = {
                "session_id": f"quiz_{quiz.id}_{user.id}_{now}",
                "quiz_id": quiz.id,
                "user_id": user.id,
                "joined_at": now,
            }
        session["last_accessed"] = now
        self.sessions.save_session(session, ttl=self._remaining_seconds(quiz))

        if reconnected:
            participant = self.registry.update_participant(
                quiz.id, user.id, session_id=session["session_id"], last_accessed=now
            )
        else:
            participant = empty_participant(user.id)
            participant.update(
                user_name=user.full_name,
                session_id=session["session_id"],
                joined_at=now,
                last_accessed=now,
            )
            if quiz.status == QUIZ_STATUS_ACTIVE:
                participant["current_question_id"] = questions[0]["question_id"]
                participant["question_started_at"] = now
            self.registry.put_participant(quiz.id, user.id, participant)

        current = self._participant_question(questions, participant)
        response = {
            "quiz": serialize_quiz(quiz),
            "session_id": session["session_id"],
            "reconnected": reconnected,
            "total_questions": len(questions),
            "current_question": current,
            "progress": self._progress(quiz, questions, participant),
        }

        if reconnected:
            self.broadcaster.emit(
                teachers_room(quiz.id),
                "participantRejoined",
                {"quiz_id": quiz.id, "user_id": user.id, "user_name": user.full_name},
            )
            self.broadcaster.emit(
                user_room(quiz.id, user.id), "restoreProgress", response["progress"]
            )
        else:
            self.broadcaster.emit(
                teachers_room(quiz.id),
                "newParticipant",
                {"quiz_id": quiz.id, "user_id": user.id, "user_name": user.full_name},
            )
            if quiz.status == QUIZ_STATUS_ACTIVE:
                self.broadcaster.emit(
                    user_room(quiz.id, user.id),
                    "restoreState",
                    {
                        "quiz_id": quiz.id,
                        "question": current,
                        "total_questions": len(questions),
                        "end_time": quiz.end_time,
                    },
                )
        self._emit_teacher_updates(quiz.id, len(questions))
        logger.info(
            f"User {user.id} {'rejoined' if reconnected else 'joined'} quiz {quiz.id}"
        )
        return response

    def _participant_question(self, questions: List[dict], participant: dict) -> Optional[dict]:
        current_id = participant.get("current_question_id")
        if current_id is None:
            return None
        for index, question in enumerate(questions):
            if question["question_id"] == current_id:
                return {**question, "question_index": index}
        return None

    def _progress(self, quiz: Quiz, questions: List[dict], participant: dict) -> dict:
        answers = participant.get("answers") or {}
        return {
            "quiz_id": quiz.id,
            "status": participant.get("status"),
            "current_question": self._participant_question(questions, participant),
            "answered_question_ids": [int(k) for k in answers],
            "current_score": participant.get("current_score") or 0,
            "correct_answers": participant.get("correct_answers") or 0,
            "total_answers": participant.get("total_answers") or 0,
            "total_questions": len(questions),
            "question_time_left": self._question_window_left(participant),
            "quiz_time_left": self._remaining_seconds(quiz),
        }

    @transactional
    def _delete_result(self, quiz_id: int, user_id: int) -> None:
        result = (
            self.db.query(QuizResult)
            .filter(QuizResult.quiz_id == quiz_id, QuizResult.user_id == user_id)
            .first()
        )
        if not result:
            raise NotFoundError("You have not joined this quiz")
        if result.status != RESULT_IN_PROGRESS:
            raise StateConflictError(
                "Only participants still in progress can leave",
                hint="finished attempts are kept for grading",
            )
        self.db.delete(result)

    def leave_quiz(self, quiz_id: int, user: User) -> bool:
        self._get_quiz(quiz_id)
        self._delete_result(quiz_id, user.id)

        participant = self.registry.get_participant(quiz_id, user.id)
        self.registry.delete_participant(quiz_id, user.id)
        if participant and participant.get("session_id"):
            self.sessions.delete_session(participant["session_id"])

        self.broadcaster.emit(
            teachers_room(quiz_id),
            "participantLeft",
            {"quiz_id": quiz_id, "user_id": user.id, "user_name": user.full_name},
        )
        quiz = self._get_quiz(quiz_id)
        self._emit_teacher_updates(quiz_id, len(quiz.quiz_questions))
        logger.info(f"User {user.id} left quiz {quiz_id}")
        return True

    # ==================== Shuffle ====================

    @transactional
    def _reshuffle(self, quiz_id: int, seed: Optional[int]) -> Quiz:
        quiz = self._get_quiz(quiz_id)
        if quiz.status != QUIZ_STATUS_PENDING:
            raise StateConflictError(
                "Questions can only be shuffled before the quiz starts",
                hint=f"quiz is {quiz.status}",
            )
        current = quiz_questions(quiz)
        if not current:
            raise ValidationError("Quiz has no questions to shuffle")

        selector = QuestionSelector(self.db)
        ratio = selector.derive_ratio(current)
        lo_ids = sorted({q.lo_id for q in current})
        type_filter = CODE_EXERCISE_TYPE if quiz.quiz_mode == "code_practice" else None
        selected = selector.select_questions(
            lo_ids=lo_ids,
            total=len(current),
            ratio=ratio,
            type_filter=type_filter,
            seed=seed if seed is not None else now_ms(),
        )
        replace_quiz_questions(self.db, quiz, selected)
        return quiz

    def shuffle_questions(self, quiz_id: int, seed: Optional[int] = None) -> dict:
        quiz = self._reshuffle(quiz_id, seed)
        self.db.refresh(quiz)
        try:
            self.sessions.invalidate_quiz(quiz.id)
        except ExternalStoreError as e:
            logger.warning(f"Cache purge after shuffling quiz {quiz.id} failed: {e.message}")
        questions = self._question_payloads(quiz, refresh=True)
        return {"quiz": serialize_quiz(quiz), "questions": questions}

    # ==================== Answers ====================

    def _response_time(
        self, quiz_id: int, question_id: int, participant: dict, client_start: Optional[int]
    ) -> int:
        """
        Elapsed ms since the question started, from server-side stamps.

        When both the quiz-wide and the participant's own stamp refer to this
        question, the later one wins so late joiners are not penalised.
        """
        now = now_ms()
        stamps = []
        current = self.registry.get_current_question(quiz_id)
        if current and current.get("question_id") == question_id and current.get("start_time"):
            stamps.append(current["start_time"])
        if participant.get("current_question_id") == question_id and participant.get(
            "question_started_at"
        ):
            stamps.append(participant["question_started_at"])

        if stamps:
            started = max(stamps)
        elif client_start:
            started = client_start
        else:
            started = participant.get("question_started_at") or now
        return int(now - started)

    def submit_answer(self, user: User, payload: RealtimeAnswerSubmit) -> dict:
        quiz = self._get_quiz(payload.quiz_id)
        if quiz.status != QUIZ_STATUS_ACTIVE:
            raise StateConflictError(
                f"Answers are only accepted while the quiz is active (quiz is {quiz.status})"
            )

        ordered_ids = [qq.question_id for qq in quiz.quiz_questions]
        if payload.question_id not in ordered_ids:
            raise ValidationError("Question does not belong to this quiz")

        answer = (
            self.db.query(Answer)
            .filter(Answer.id == payload.answer_id, Answer.question_id == payload.question_id)
            .first()
        )
        if not answer:
            raise ValidationError("Answer does not belong to this question")

        participant = self.registry.get_participant(quiz.id, user.id)
        if not participant:
            raise StateConflictError(
                "You have not joined this quiz", hint="join with the quiz PIN first"
            )

        response_time = self._response_time(
            quiz.id, payload.question_id, participant, payload.start_time
        )
        limit = settings.quiz_question_time_limit_ms
        if response_time < 0 or response_time > limit:
            raise ValidationError(
                f"Response time {response_time}ms is outside the allowed 0-{limit}ms window"
            )

        previous = (participant.get("answers") or {}).get(str(payload.question_id)) or {}
        attempt_number = len(previous.get("attempt_history") or []) + 1

        end = as_utc(quiz.end_time)
        time_remaining = max(0, to_ms(end) - now_ms()) if end else None
        total_quiz_time = quiz.duration * 60 * 1000 if quiz.duration else None

        is_correct = bool(answer.is_correct)
        score_result = DynamicScoringService.calculate_score(
            is_correct=is_correct,
            response_time=response_time,
            attempt_number=attempt_number,
            difficulty=answer.question.difficulty,
            recent_results=recent_results(participant),
            total_quiz_time=total_quiz_time,
            time_remaining=time_remaining,
        )

        answered = set((participant.get("answers") or {}).keys()) | {str(payload.question_id)}
        next_question_id = next((qid for qid in ordered_ids if str(qid) not in answered), None)

        saved = self.registry.save_answer(
            quiz.id,
            user.id,
            payload.question_id,
            payload.answer_id,
            is_correct,
            response_time,
            score_result,
            total_questions=len(ordered_ids),
            next_question_id=next_question_id,
        )
        if not saved["success"]:
            raise StateConflictError(saved["message"], reason=saved["reason"])

        position = self.registry.get_position(quiz.id, user.id)
        position_payload = {"quizId": quiz.id, "userId": user.id, **position}
        if quiz.quiz_mode == "practice" and quiz.gamification_enabled:
            position_payload["mode"] = "practice"
            self.broadcaster.emit(quiz_room(quiz.id), "userPositionUpdate", position_payload)
            self.broadcaster.emit(
                quiz_room(quiz.id),
                "leaderboardUpdate",
                {"quiz_id": quiz.id, "leaderboard": self.registry.get_leaderboard(quiz.id)},
            )
        else:
            self.broadcaster.emit(user_room(quiz.id, user.id), "userPositionUpdate", position_payload)

        questions = self._question_payloads(quiz)
        next_question = None
        if not saved["completed"] and next_question_id is not None:
            next_question = self._participant_question(questions, saved["participant"])
            self.broadcaster.emit(
                user_room(quiz.id, user.id),
                "newQuestion",
                {
                    "quiz_id": quiz.id,
                    "question": next_question,
                    "total_questions": len(ordered_ids),
                },
            )

        if saved["completed"]:
            self._on_participant_completed(quiz, ordered_ids, payload.question_id)

        return {
            "isCorrect": is_correct,
            "attempt_index": saved["attempt_index"],
            "points_earned": saved["points_earned"],
            "response_time": response_time,
            "scoring": score_result,
            "completed": saved["completed"],
            "next_question": next_question,
            **position,
        }

    def _on_participant_completed(self, quiz: Quiz, ordered_ids: List[int], question_id: int) -> None:
        self.broadcaster.emit(
            students_room(quiz.id),
            "showLeaderboard",
            {
                "quiz_id": quiz.id,
                "leaderboard": self.registry.get_leaderboard(quiz.id),
                "current_question_index": ordered_ids.index(question_id),
                "isLastQuestion": True,
            },
        )
        self._emit_teacher_updates(quiz.id, len(ordered_ids))
        if self.completion_watcher is not None and self.all_participants_completed(quiz.id):
            self.completion_watcher.schedule(quiz.id)

    # ==================== Leaderboards & results ====================

    def get_leaderboard(self, quiz_id: int) -> List[dict]:
        quiz = self._get_quiz(quiz_id)
        if quiz.quiz_mode != "assessment":
            return self.registry.get_leaderboard(quiz_id)

        rows = (
            self.db.query(QuizResult)
            .filter(QuizResult.quiz_id == quiz_id)
            .all()
        )
        rows.sort(
            key=lambda r: (
                -float(r.score or 0),
                r.completion_time if r.completion_time is not None else float("inf"),
            )
        )
        return [
            {
                "position": position,
                "user_id": row.user_id,
                "user_name": row.user.full_name if row.user else None,
                "score": float(row.score or 0),
                "status": row.status,
                "completion_time": row.completion_time,
            }
            for position, row in enumerate(rows, start=1)
        ]

    @transactional
    def _flag_leaderboard(self, quiz_id: int) -> Quiz:
        quiz = self._get_quiz(quiz_id)
        if quiz.status != QUIZ_STATUS_ACTIVE:
            raise StateConflictError("The leaderboard can only be shown while the quiz is active")
        quiz.show_leaderboard = True
        return quiz

    def show_leaderboard(self, quiz_id: int) -> dict:
        quiz = self._flag_leaderboard(quiz_id)
        leaderboard = self.get_leaderboard(quiz_id)
        self.broadcaster.emit(
            students_room(quiz_id),
            "showLeaderboard",
            {
                "quiz_id": quiz_id,
                "leaderboard": leaderboard,
                "current_question_index": quiz.current_question_index,
                "isLastQuestion": False,
            },
        )
        return {"quiz_id": quiz_id, "leaderboard": leaderboard}

    def get_my_result(self, quiz_id: int, user: User) -> dict:
        quiz = self._get_quiz(quiz_id)
        result = (
            self.db.query(QuizResult)
            .filter(QuizResult.quiz_id == quiz_id, QuizResult.user_id == user.id)
            .first()
        )
        if not result:
            raise NotFoundError("No result for this quiz")

        data = {
            "quiz_id": quiz_id,
            "quiz_name": quiz.name,
            "status": result.status,
            "score": float(result.score or 0),
            "completion_time": result.completion_time,
            "raw_total_points": result.raw_total_points,
            "max_points": result.max_points,
            "bonuses_total": result.bonuses_total,
            "start_time": result.start_time,
            "synced_at": result.synced_at,
        }
        try:
            participant = self.registry.get_participant(quiz_id, user.id)
        except ExternalStoreError as e:
            logger.warning(f"Live result unavailable for quiz {quiz_id}: {e.message}")
            participant = None
        if participant:
            data["live"] = {
                "status": participant.get("status"),
                "current_score": participant.get("current_score") or 0,
                "correct_answers": participant.get("correct_answers") or 0,
                "total_answers": participant.get("total_answers") or 0,
            }
        return data

    def teacher_updates(self, quiz_id: int, total_questions: int) -> dict:
        participants = self.registry.list_participants(quiz_id)
        scores = [normalized_score(p, total_questions) for p in participants.values()]
        completed = sum(1 for p in participants.values() if p.get("status") == PARTICIPANT_COMPLETED)
        count = len(participants)
        return {
            "quiz_id": quiz_id,
            "participant_count": count,
            "average_score": round(sum(scores) / count, 2) if count else 0,
            "highest_score": max(scores) if scores else 0,
            "lowest_score": min(scores) if scores else 0,
            "completion_rate": round(completed / count * 100, 2) if count else 0,
            "score_distribution": score_distribution(scores),
        }

    def _emit_teacher_updates(self, quiz_id: int, total_questions: int) -> None:
        try:
            stats = self.teacher_updates(quiz_id, total_questions)
        except ExternalStoreError as e:
            logger.warning(f"Skipping teacher updates for quiz {quiz_id}: {e.message}")
            return
        self.broadcaster.emit(teachers_room(quiz_id), "teacherUpdates", stats)

    def finalize_participant(self, quiz_id: int, user_id: int) -> dict:
        return self.finalizer.finalize_participant(quiz_id, user_id)
