import logging
from typing import Dict, List, Optional

from app.core.cache import CacheService
from app.core.config import settings
from app.utils.clock import now_ms

logger = logging.getLogger(__name__)

PARTICIPANT_IN_PROGRESS = "in_progress"
PARTICIPANT_COMPLETED = "completed"


def participant_key(quiz_id: int, user_id: int) -> str:
    return f"quiz_sessions:{quiz_id}:participants:{user_id}"


def current_question_key(quiz_id: int) -> str:
    return f"quiz_sessions:{quiz_id}:current_question"


def empty_participant(user_id: int) -> dict:
    return {
        "user_id": user_id,
        "status": PARTICIPANT_IN_PROGRESS,
        "current_score": 0,
        "correct_answers": 0,
        "total_answers": 0,
        "answers": {},
        "current_question_id": None,
        "question_started_at": None,
        "session_id": None,
        "last_accessed": None,
    }


def recent_results(participant: Optional[dict]) -> List[bool]:
    """Correctness of every recorded attempt, newest first."""
    if not participant:
        return []
    attempts = []
    for answer in (participant.get("answers") or {}).values():
        for attempt in answer.get("attempt_history") or []:
            attempts.append((attempt.get("timestamp") or 0, bool(attempt.get("is_correct"))))
    attempts.sort(key=lambda item: item[0], reverse=True)
    return [is_correct for _, is_correct in attempts]


def leaderboard_sort_key(entry: dict):
    last_answer = entry.get("last_answer_time")
    return (
        -(entry.get("current_score") or 0),
        -(entry.get("correct_answers") or 0),
        last_answer if last_answer is not None else float("inf"),
    )


class RealtimeRegistry:
    """
    Live participant state per quiz, stored in redis.

    This is the system of record for scoring while a quiz runs; durable
    QuizResult rows are reconciled from it when the quiz ends.
    """

    def __init__(self, cache: CacheService):
        self.cache = cache

    def _lock_name(self, quiz_id: int, user_id: int) -> str:
        return f"lock:participant:{quiz_id}:{user_id}"

    # --- participants ---

    def get_participant(self, quiz_id: int, user_id: int) -> Optional[dict]:
        return self.cache.get(participant_key(quiz_id, user_id))

    def put_participant(self, quiz_id: int, user_id: int, data: dict) -> dict:
        # Writes after the quiz ended must not drop the expiry set by expire_quiz
        self.cache.set(participant_key(quiz_id, user_id), data, keep_ttl=True)
        return data

    def update_participant(self, quiz_id: int, user_id: int, **fields) -> dict:
        with self.cache.lock(self._lock_name(quiz_id, user_id)):
            current = self.get_participant(quiz_id, user_id) or empty_participant(user_id)
            current.update(fields)
            return self.put_participant(quiz_id, user_id, current)

    def delete_participant(self, quiz_id: int, user_id: int) -> None:
        self.cache.delete(participant_key(quiz_id, user_id))

    def list_participants(self, quiz_id: int) -> Dict[int, dict]:
        prefix = participant_key(quiz_id, "")
        participants = {}
        for key in self.cache.keys(f"{prefix}*"):
            data = self.cache.get(key)
            if data is None:
                continue
            try:
                user_id = int(key[len(prefix):])
            except ValueError:
                logger.warning(f"Ignoring malformed participant key {key}")
                continue
            participants[user_id] = data
        return participants

    def clear_quiz(self, quiz_id: int) -> None:
        self.cache.delete_pattern(f"quiz_sessions:{quiz_id}:*")

    def expire_quiz(self, quiz_id: int, ttl: int) -> int:
        """Keep a finished quiz's live state readable for ``ttl`` seconds, then let redis drop it."""
        return self.cache.expire_pattern(f"quiz_sessions:{quiz_id}:*", ttl)

    # --- server-stamped question start ---

    def set_current_question(
        self, quiz_id: int, question_index: int, question_id: int, start_time: Optional[int] = None
    ) -> dict:
        data = {
            "start_time": start_time if start_time is not None else now_ms(),
            "question_index": question_index,
            "question_id": question_id,
        }
        self.cache.set(current_question_key(quiz_id), data, keep_ttl=True)
        return data

    def get_current_question(self, quiz_id: int) -> Optional[dict]:
        return self.cache.get(current_question_key(quiz_id))

    # --- answers ---

    def save_answer(
        self,
        quiz_id: int,
        user_id: int,
        question_id: int,
        answer_id: int,
        is_correct: bool,
        response_time: int,
        score_result: dict,
        total_questions: int,
        next_question_id: Optional[int] = None,
    ) -> dict:
        """
        Record one attempt and recompute the participant's running totals.

        Returns ``{"success": False, "reason": ...}`` when the attempt is not
        allowed; otherwise the updated participant plus attempt details.
        """
        max_attempts = settings.quiz_max_attempts
        with self.cache.lock(self._lock_name(quiz_id, user_id)):
            participant = self.get_participant(quiz_id, user_id) or empty_participant(user_id)
            answers = participant.get("answers") or {}
            key = str(question_id)
            existing = answers.get(key)
            history = list((existing or {}).get("attempt_history") or [])

            if existing and existing.get("is_correct"):
                return {
                    "success": False,
                    "reason": "already_correct",
                    "message": "This question was already answered correctly",
                }
            if len(history) >= max_attempts:
                return {
                    "success": False,
                    "reason": "max_attempts_reached",
                    "message": f"All {max_attempts} attempts for this question were used",
                }

            attempt_index = len(history) + 1
            points = int(score_result.get("total_points") or 0) if is_correct else 0
            timestamp = now_ms()
            attempt = {
                "attempt_index": attempt_index,
                "answer_id": answer_id,
                "is_correct": bool(is_correct),
                "response_time": response_time,
                "points_earned": points,
                "timestamp": timestamp,
                "scoring_details": score_result,
            }
            answers[key] = {
                "answer_id": answer_id,
                "is_correct": bool(is_correct),
                "response_time": response_time,
                "timestamp": timestamp,
                "attempts": attempt_index,
                "points_earned": points,
                "attempt_history": history + [attempt],
            }

            # Totals come from the latest attempt of each question only
            participant["answers"] = answers
            participant["current_score"] = sum(a.get("points_earned") or 0 for a in answers.values())
            participant["correct_answers"] = sum(1 for a in answers.values() if a.get("is_correct"))
            participant["total_answers"] = len(answers)
            participant["last_answer_time"] = timestamp
            participant["last_accessed"] = timestamp

            completed = total_questions > 0 and len(answers) >= total_questions
            if completed:
                participant["status"] = PARTICIPANT_COMPLETED
                participant["completed_at"] = participant.get("completed_at") or timestamp
                participant["current_question_id"] = question_id
            else:
                participant["status"] = PARTICIPANT_IN_PROGRESS
                participant["current_question_id"] = next_question_id or question_id
                participant["question_started_at"] = timestamp

            self.put_participant(quiz_id, user_id, participant)

        return {
            "success": True,
            "attempt_index": attempt_index,
            "points_earned": points,
            "completed": completed,
            "participant": participant,
        }

    # --- leaderboard ---

    def get_leaderboard(self, quiz_id: int) -> List[dict]:
        entries = []
        for user_id, data in self.list_participants(quiz_id).items():
            entries.append(
                {
                    "user_id": user_id,
                    "user_name": data.get("user_name"),
                    "current_score": data.get("current_score") or 0,
                    "correct_answers": data.get("correct_answers") or 0,
                    "total_answers": data.get("total_answers") or 0,
                    "status": data.get("status"),
                    "last_answer_time": data.get("last_answer_time"),
                }
            )
        entries.sort(key=leaderboard_sort_key)
        for position, entry in enumerate(entries, start=1):
            entry["position"] = position
        return entries

    def get_position(self, quiz_id: int, user_id: int) -> dict:
        leaderboard = self.get_leaderboard(quiz_id)
        for entry in leaderboard:
            if entry["user_id"] == user_id:
                return {
                    "position": entry["position"],
                    "score": entry["current_score"],
                    "totalParticipants": len(leaderboard),
                }
        return {"position": None, "score": 0, "totalParticipants": len(leaderboard)}
