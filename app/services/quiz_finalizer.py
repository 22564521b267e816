import logging
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from app.core.cache import CacheService
from app.core.config import settings
from app.core.decorator import transactional
from app.core.exceptions import AppError, LockTimeoutError, NotFoundError
from app.models.quiz import QUIZ_STATUS_FINISHED, Quiz, QuizQuestion
from app.models.quiz_result import (
    RESULT_COMPLETED,
    RESULT_IN_PROGRESS,
    RESULT_TERMINATED,
    QuizResult,
    UserQuestionHistory,
)
from app.services.realtime_registry import PARTICIPANT_COMPLETED, RealtimeRegistry
from app.services.scoring import BASE_POINTS_CORRECT, DynamicScoringService
from app.utils.clock import to_ms, utcnow

logger = logging.getLogger(__name__)

FINAL_STATUSES = (RESULT_COMPLETED, RESULT_TERMINATED)


def sync_lock_name(quiz_id: int) -> str:
    return f"lock:quizSync:{quiz_id}"


def participant_finished(snapshot: dict, total_questions: int, quiz_finished: bool) -> bool:
    """A participant counts as done when the registry says so, every question
    was answered, or the quiz itself is over."""
    if snapshot.get("status") == PARTICIPANT_COMPLETED:
        return True
    answered = len(snapshot.get("answers") or {})
    if total_questions and answered >= total_questions:
        return True
    return quiz_finished


def reconcile(
    snapshot: Optional[dict],
    durable: Optional[dict],
    total_questions: int,
    quiz_finished: bool = False,
    now: Optional[datetime] = None,
) -> dict:
    """
    Decide how the durable QuizResult should look given the live registry
    snapshot. Pure: no I/O, no mutation of the inputs.

    Returns a dict with ``action`` in {"skip", "noop", "create", "update"},
    ``idempotent`` and, for create/update, the new column ``values``.
    """
    if not snapshot:
        return {"action": "skip", "reason": "participant_missing", "idempotent": False}

    if durable and durable.get("status") in FINAL_STATUSES:
        return {
            "action": "noop",
            "reason": f"already_{durable['status']}",
            "idempotent": True,
            "score": durable.get("score"),
        }

    if not participant_finished(snapshot, total_questions, quiz_finished):
        return {"action": "skip", "reason": "not_completed", "idempotent": False}

    answers = list((snapshot.get("answers") or {}).values())
    answered = len(answers)
    question_count = total_questions or answered
    correct = sum(1 for a in answers if a.get("is_correct"))
    raw_points = sum(int(a.get("points_earned") or 0) for a in answers)
    summary = DynamicScoringService.process_quiz_completion(answers, question_count)

    score = round(correct / question_count * 10, 2) if question_count else 0.0

    completion_time = None
    started_ms = to_ms(durable.get("start_time")) if durable else None
    finished_ms = snapshot.get("completed_at") or snapshot.get("last_answer_time")
    if started_ms and finished_ms and finished_ms >= started_ms:
        completion_time = int((finished_ms - started_ms) / 1000)

    values = {
        "score": score,
        "status": RESULT_COMPLETED,
        "completion_time": completion_time,
        "raw_total_points": raw_points,
        "max_points": question_count * BASE_POINTS_CORRECT,
        "bonuses_total": summary["bonus_points"],
        "synced_at": now or utcnow(),
    }
    return {
        "action": "update" if durable else "create",
        "idempotent": False,
        "score": score,
        "values": values,
    }


def _row_snapshot(row: Optional[QuizResult]) -> Optional[dict]:
    if row is None:
        return None
    return {
        "status": row.status,
        "score": float(row.score) if row.score is not None else None,
        "start_time": row.start_time,
    }


class QuizFinalizer:
    """Projects registry state into durable QuizResult rows."""

    def __init__(self, db: Session, registry: RealtimeRegistry, cache: CacheService):
        self.db = db
        self.registry = registry
        self.cache = cache

    def _question_ids(self, quiz_id: int) -> List[int]:
        rows = (
            self.db.query(QuizQuestion.question_id)
            .filter(QuizQuestion.quiz_id == quiz_id)
            .order_by(QuizQuestion.order_index)
            .all()
        )
        return [row[0] for row in rows]

    def _write_history(
        self, quiz_id: int, user_id: int, snapshot: dict, question_ids: Sequence[int]
    ) -> int:
        written = 0
        answers = snapshot.get("answers") or {}
        for question_key, answer in answers.items():
            for attempt in answer.get("attempt_history") or []:
                self.db.add(
                    UserQuestionHistory(
                        user_id=user_id,
                        quiz_id=quiz_id,
                        question_id=int(question_key),
                        selected_answer=attempt.get("answer_id"),
                        is_correct=bool(attempt.get("is_correct")),
                        time_spent=attempt.get("response_time"),
                        attempt_index=attempt.get("attempt_index") or 1,
                        points_earned=attempt.get("points_earned") or 0,
                    )
                )
                written += 1

        # Unanswered questions are recorded as wrong with no selection
        for question_id in question_ids:
            if str(question_id) not in answers:
                self.db.add(
                    UserQuestionHistory(
                        user_id=user_id,
                        quiz_id=quiz_id,
                        question_id=question_id,
                        selected_answer=None,
                        is_correct=False,
                        time_spent=0,
                        attempt_index=1,
                        points_earned=0,
                    )
                )
                written += 1
        return written

    def _finalize(
        self,
        quiz_id: int,
        user_id: int,
        quiz_finished: bool,
        question_ids: Sequence[int],
        snapshot: Optional[dict] = None,
    ) -> dict:
        if snapshot is None:
            snapshot = self.registry.get_participant(quiz_id, user_id)

        # Row lock so concurrent finalizers cannot both create or complete
        row = (
            self.db.query(QuizResult)
            .filter(QuizResult.quiz_id == quiz_id, QuizResult.user_id == user_id)
            .with_for_update()
            .first()
        )

        outcome = reconcile(snapshot, _row_snapshot(row), len(question_ids), quiz_finished)
        action = outcome["action"]

        if action == "create":
            row = QuizResult(quiz_id=quiz_id, user_id=user_id, **outcome["values"])
            self.db.add(row)
        elif action == "update":
            for field, value in outcome["values"].items():
                setattr(row, field, value)

        if action in ("create", "update"):
            self._write_history(quiz_id, user_id, snapshot, question_ids)
            self.db.flush()
            logger.info(
                f"Finalized participant {user_id} of quiz {quiz_id} "
                f"({action}, score={outcome['score']})"
            )

        return {
            "success": action != "skip",
            "action": action,
            "idempotent": outcome["idempotent"],
            "score": outcome.get("score"),
            "reason": outcome.get("reason"),
        }

    @transactional
    def finalize_participant(self, quiz_id: int, user_id: int) -> dict:
        quiz = self.db.query(Quiz).filter(Quiz.id == quiz_id).first()
        if not quiz:
            raise NotFoundError("Quiz not found")
        return self._finalize(
            quiz_id,
            user_id,
            quiz_finished=quiz.status == QUIZ_STATUS_FINISHED,
            question_ids=self._question_ids(quiz_id),
        )

    def sync_lock(self, quiz_id: int):
        """Serialises everything that syncs or ends ``quiz_id``."""
        return self.cache.lock(
            sync_lock_name(quiz_id),
            ttl=settings.quiz_sync_lock_ttl,
            wait=settings.quiz_sync_lock_wait_seconds,
        )

    def sync_quiz(self, quiz_id: int) -> dict:
        """
        Reconcile every registry participant of an ending quiz.

        Waits for a sync already in progress; skipped when that one does
        not finish within ``quiz_sync_lock_wait_seconds``.
        """
        try:
            with self.sync_lock(quiz_id):
                return self.sync_participants(quiz_id)
        except LockTimeoutError:
            logger.warning(f"Quiz {quiz_id} sync still held by another worker, skipping")
            return {"skipped": True, "synced": 0}

    def sync_participants(self, quiz_id: int) -> dict:
        """Caller must hold ``sync_lock``. Each participant is committed on its own."""
        synced = 0
        question_ids = self._question_ids(quiz_id)
        participants = self.registry.list_participants(quiz_id)
        for user_id, snapshot in participants.items():
            try:
                outcome = self._finalize(
                    quiz_id,
                    user_id,
                    quiz_finished=True,
                    question_ids=question_ids,
                    snapshot=snapshot,
                )
                self.db.commit()
                if outcome["action"] in ("create", "update"):
                    synced += 1
            except AppError as e:
                self.db.rollback()
                logger.error(f"Failed to sync participant {user_id} of quiz {quiz_id}: {e.message}")
            except Exception:
                self.db.rollback()
                logger.error(
                    f"Failed to sync participant {user_id} of quiz {quiz_id}", exc_info=True
                )

        # Joined but never reached the registry: close them out
        orphaned = (
            self.db.query(QuizResult)
            .filter(
                QuizResult.quiz_id == quiz_id,
                QuizResult.status == RESULT_IN_PROGRESS,
            )
            .all()
        )
        for row in orphaned:
            if row.user_id not in participants:
                row.status = RESULT_TERMINATED
        self.db.commit()

        logger.info(f"Synced {synced} participants for quiz {quiz_id}")
        return {"skipped": False, "synced": synced}
