import logging
from typing import Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)

BASE_POINTS_CORRECT = 10
BASE_POINTS_RETRY = 5

# (threshold_ms, bonus, name); first tier with response_time < threshold wins
SPEED_TIERS = [
    (2000, 15, "Lightning Fast"),
    (3000, 10, "Very Fast"),
    (5000, 5, "Fast"),
    (8000, 2, "Quick"),
]

STREAK_HISTORY_LIMIT = 25
MIN_STREAK = 3
STREAK_BONUS = 2

# (streak, multiplier, name); only the highest reached tier applies
COMBO_THRESHOLDS = [
    (5, 1.2, "Hot Streak"),
    (10, 1.5, "On Fire"),
    (15, 2.0, "Unstoppable"),
    (20, 2.5, "Legendary"),
]

DIFFICULTY_MULTIPLIERS = {
    "easy": 1.0,
    "medium": 1.2,
    "hard": 1.5,
    "expert": 2.0,
}
DEFAULT_DIFFICULTY = "medium"

EARLY_FINISH_RATIO = 0.5
EARLY_FINISH_BONUS = 25
TIME_PRESSURE_RATIO = 0.1
TIME_PRESSURE_MULTIPLIER = 1.3

PERFECT_SCORE_BONUS = 50
PERFECT_SPEED_BONUS = 30
PERFECT_SPEED_THRESHOLD_MS = 5000
PERFECT_STREAK_BONUS = 40
PERFECT_STREAK_MIN_CORRECT = 5
FLAWLESS_VICTORY_BONUS = 100


def _zero_score() -> dict:
    return {
        "base_points": 0,
        "speed_bonus": 0,
        "streak_bonus": 0,
        "difficulty_multiplier": 0,
        "time_bonus": 0,
        "streak_multiplier": 0,
        "total_points": 0,
        "bonuses": [],
        "streak_info": {"current_streak": 0, "is_combo": False, "combo_name": None},
    }


class DynamicScoringService:
    """
    Point values for single answers and end-of-quiz bonuses.

    Everything here is pure: callers supply the recent answer history
    (newest first) instead of the service reading it.
    """

    @staticmethod
    def calculate_speed_bonus(response_time: Optional[float]) -> dict:
        if response_time is not None:
            for threshold, bonus, name in SPEED_TIERS:
                if response_time < threshold:
                    return {"bonus": bonus, "name": name, "threshold": threshold}
        return {"bonus": 0, "name": None, "threshold": None}

    @staticmethod
    def calculate_streak(recent_results: Iterable[bool], is_correct: bool) -> dict:
        """
        Count the contiguous correct run at the head of ``recent_results``
        (newest first, at most the last 25 considered) plus the current answer.
        """
        current_streak = 0
        for index, was_correct in enumerate(recent_results):
            if index >= STREAK_HISTORY_LIMIT or not was_correct:
                break
            current_streak += 1

        if is_correct:
            current_streak += 1

        bonus, name = 0, None
        if current_streak >= MIN_STREAK:
            bonus = STREAK_BONUS
            name = f"{current_streak} Streak"

        multiplier, combo_name = 1.0, None
        for streak, combo_multiplier, combo in COMBO_THRESHOLDS:
            if current_streak >= streak:
                multiplier, combo_name = combo_multiplier, combo

        return {
            "current_streak": current_streak,
            "bonus": bonus,
            "name": name,
            "multiplier": multiplier,
            "combo_name": combo_name,
        }

    @staticmethod
    def resolve_difficulty(difficulty: Optional[str]) -> str:
        key = (difficulty or "").strip().lower()
        return key if key in DIFFICULTY_MULTIPLIERS else DEFAULT_DIFFICULTY

    @staticmethod
    def calculate_time_bonus(
        total_quiz_time: Optional[float], time_remaining: Optional[float]
    ) -> dict:
        if not total_quiz_time or not time_remaining:
            return {"bonus": 0, "name": None, "multiplier": 1.0}

        ratio = time_remaining / total_quiz_time
        if ratio > EARLY_FINISH_RATIO:
            return {"bonus": EARLY_FINISH_BONUS, "name": "Early Finish Bonus", "multiplier": 1.0}
        if ratio < TIME_PRESSURE_RATIO:
            # Flag for whole-quiz use; never added to a single answer
            return {"bonus": 0, "name": "Time Pressure", "multiplier": TIME_PRESSURE_MULTIPLIER}
        return {"bonus": 0, "name": None, "multiplier": 1.0}

    @classmethod
    def calculate_score(
        cls,
        is_correct: bool,
        response_time: Optional[float],
        attempt_number: int = 1,
        difficulty: Optional[str] = None,
        recent_results: Sequence[bool] = (),
        total_quiz_time: Optional[float] = None,
        time_remaining: Optional[float] = None,
    ) -> dict:
        """Score one answer event. Times are in milliseconds."""
        if not is_correct:
            return _zero_score()

        base_points = BASE_POINTS_CORRECT if attempt_number <= 1 else BASE_POINTS_RETRY
        speed = cls.calculate_speed_bonus(response_time)
        streak = cls.calculate_streak(recent_results, is_correct)
        difficulty_key = cls.resolve_difficulty(difficulty)
        difficulty_multiplier = DIFFICULTY_MULTIPLIERS[difficulty_key]
        time_bonus = cls.calculate_time_bonus(total_quiz_time, time_remaining)

        # Difficulty scales base+speed+streak only; combo applies last
        total = (base_points + speed["bonus"] + streak["bonus"]) * difficulty_multiplier
        total += time_bonus["bonus"]
        total *= streak["multiplier"]
        total_points = int(round(total))

        bonuses = []
        if speed["bonus"] > 0:
            bonuses.append(speed["name"])
        if streak["bonus"] > 0:
            bonuses.append(streak["name"])
        if difficulty_multiplier > 1:
            bonuses.append(f"{difficulty_key.upper()} Question")
        if time_bonus["bonus"] > 0:
            bonuses.append(time_bonus["name"])
        if streak["multiplier"] > 1:
            bonuses.append(streak["combo_name"])

        return {
            "base_points": base_points,
            "speed_bonus": speed["bonus"],
            "streak_bonus": streak["bonus"],
            "difficulty_multiplier": difficulty_multiplier,
            "time_bonus": time_bonus["bonus"],
            "streak_multiplier": streak["multiplier"],
            "time_pressure_multiplier": time_bonus["multiplier"],
            "total_points": total_points,
            "bonuses": bonuses,
            "streak_info": {
                "current_streak": streak["current_streak"],
                "is_combo": streak["multiplier"] > 1,
                "combo_name": streak["combo_name"],
            },
        }

    @staticmethod
    def calculate_perfect_bonuses(
        total_questions: int,
        correct_answers: int,
        average_response_time: float,
        had_streak_break: bool,
    ) -> dict:
        perfect_bonuses: List[dict] = []

        if correct_answers == total_questions:
            perfect_bonuses.append(
                {"type": "perfect_score", "name": "Perfect Score", "bonus": PERFECT_SCORE_BONUS}
            )
        if average_response_time < PERFECT_SPEED_THRESHOLD_MS:
            perfect_bonuses.append(
                {"type": "perfect_speed", "name": "Speed Demon", "bonus": PERFECT_SPEED_BONUS}
            )
        if not had_streak_break and correct_answers >= PERFECT_STREAK_MIN_CORRECT:
            perfect_bonuses.append(
                {"type": "perfect_streak", "name": "Unbroken Chain", "bonus": PERFECT_STREAK_BONUS}
            )
        # Unlocked when the three bonuses above were all collected
        if len(perfect_bonuses) == 3:
            perfect_bonuses.append(
                {
                    "type": "flawless_victory",
                    "name": "FLAWLESS VICTORY",
                    "bonus": FLAWLESS_VICTORY_BONUS,
                }
            )

        return {
            "perfect_bonuses": perfect_bonuses,
            "total_bonus": sum(b["bonus"] for b in perfect_bonuses),
        }

    @classmethod
    def process_quiz_completion(cls, answers: Sequence[dict], total_questions: int) -> dict:
        """
        Summarise a finished attempt from its scored answers.

        Each answer carries ``is_correct``, ``response_time`` and the already
        computed ``points_earned``.
        """
        if not answers:
            return {
                "total_score": 0,
                "answer_points": 0,
                "correct_answers": 0,
                "total_questions": total_questions,
                "accuracy": 0,
                "average_response_time": 0,
                "perfect_bonuses": [],
                "bonus_points": 0,
            }

        answer_points = sum(int(a.get("points_earned") or 0) for a in answers)
        correct_answers = sum(1 for a in answers if a.get("is_correct"))
        total_response_time = sum(float(a.get("response_time") or 0) for a in answers)
        average_response_time = total_response_time / len(answers)
        had_streak_break = any(not a.get("is_correct") for a in answers)

        perfect = cls.calculate_perfect_bonuses(
            total_questions=total_questions,
            correct_answers=correct_answers,
            average_response_time=average_response_time,
            had_streak_break=had_streak_break,
        )

        accuracy = (
            round(correct_answers / total_questions * 100) if total_questions else 0
        )
        return {
            "total_score": answer_points + perfect["total_bonus"],
            "answer_points": answer_points,
            "correct_answers": correct_answers,
            "total_questions": total_questions,
            "accuracy": accuracy,
            "average_response_time": round(average_response_time),
            "perfect_bonuses": perfect["perfect_bonuses"],
            "bonus_points": perfect["total_bonus"],
        }
