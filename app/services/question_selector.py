import logging
import math
import random
from collections import defaultdict
from typing import Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from app.core.exceptions import InsufficientQuestions, InvalidRatio, ValidationError
from app.models.question import LEVEL_EASY, LEVEL_HARD, LEVEL_MEDIUM, Question

logger = logging.getLogger(__name__)

LEVEL_KEYS = {LEVEL_EASY: "easy", LEVEL_MEDIUM: "medium", LEVEL_HARD: "hard"}
COVERAGE_ORDER = (LEVEL_EASY, LEVEL_MEDIUM, LEVEL_HARD)
SHORTFALL_ORDER = (LEVEL_MEDIUM, LEVEL_EASY, LEVEL_HARD)


def validate_ratio(ratio: dict) -> Dict[str, float]:
    if not isinstance(ratio, dict):
        raise InvalidRatio(ratio)
    try:
        values = {key: float(ratio.get(key, 0) or 0) for key in ("easy", "medium", "hard")}
    except (TypeError, ValueError):
        raise InvalidRatio(ratio)
    if any(v < 0 for v in values.values()) or abs(sum(values.values()) - 100) > 1e-9:
        raise InvalidRatio(ratio)
    return values


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def level_budgets(total: int, ratio: Dict[str, float]) -> Dict[int, int]:
    easy = _round_half_up(ratio["easy"] / 100 * total)
    medium = _round_half_up(ratio["medium"] / 100 * total)
    # Rounding can overshoot; clamp so the three budgets always sum to total
    easy = min(easy, total)
    medium = min(medium, total - easy)
    return {LEVEL_EASY: easy, LEVEL_MEDIUM: medium, LEVEL_HARD: total - easy - medium}


class QuestionSelector:
    """
    Samples quiz questions from a set of learning outcomes so that every LO
    is covered and the difficulty mix follows the requested ratio.
    """

    def __init__(self, db: Session, rng: Optional[random.Random] = None):
        self.db = db
        self.rng = rng

    def _rng(self, seed) -> random.Random:
        if seed is not None:
            return random.Random(seed)
        return self.rng or random.Random()

    def _load_pool(self, lo_ids: Sequence[int], type_filter: Optional[int]):
        query = self.db.query(Question).filter(
            Question.lo_id.in_(list(lo_ids)),
            Question.level_id.in_(list(LEVEL_KEYS)),
        )
        if type_filter is not None:
            query = query.filter(Question.question_type == type_filter)

        pool: Dict[tuple, List[Question]] = defaultdict(list)
        for question in query.order_by(Question.id).all():
            pool[(question.lo_id, question.level_id)].append(question)
        return pool

    def select_questions(
        self,
        lo_ids: Sequence[int],
        total: int,
        ratio: dict,
        type_filter: Optional[int] = None,
        seed=None,
    ) -> List[Question]:
        if not lo_ids:
            raise ValidationError("At least one learning outcome is required")
        if isinstance(total, bool) or not isinstance(total, int) or total <= 0:
            raise ValidationError("Total questions must be a positive integer")
        ratio_values = validate_ratio(ratio)

        rng = self._rng(seed)
        budgets = level_budgets(total, ratio_values)

        selected_los = list(dict.fromkeys(lo_ids))
        if len(selected_los) > total:
            rng.shuffle(selected_los)
            selected_los = selected_los[:total]

        pool = self._load_pool(selected_los, type_filter)
        picked: List[Question] = []
        picked_ids = set()

        def take(question: Question) -> None:
            picked.append(question)
            picked_ids.add(question.id)

        # Phase 1: one question per LO at the lowest available difficulty
        for lo_id in selected_los:
            for level in COVERAGE_ORDER:
                candidates = [q for q in pool[(lo_id, level)] if q.id not in picked_ids]
                if not candidates:
                    continue
                take(rng.choice(candidates))
                if budgets[level] > 0:
                    budgets[level] -= 1
                else:
                    # Charge another level so coverage picks never exceed total
                    for other in SHORTFALL_ORDER:
                        if budgets[other] > 0:
                            budgets[other] -= 1
                            break
                break
            else:
                raise InsufficientQuestions(lo_id)

        # Phase 2: fill each level from the union of the selected LOs
        shortfall = 0
        for level in COVERAGE_ORDER:
            wanted = budgets[level]
            if wanted <= 0:
                continue
            candidates = [
                q
                for lo_id in selected_los
                for q in pool[(lo_id, level)]
                if q.id not in picked_ids
            ]
            rng.shuffle(candidates)
            for question in candidates[:wanted]:
                take(question)
            shortfall += max(0, wanted - len(candidates))

        # Phase 3: cover any shortfall from medium, then easy, then hard
        for level in SHORTFALL_ORDER:
            if shortfall <= 0:
                break
            candidates = [
                q
                for lo_id in selected_los
                for q in pool[(lo_id, level)]
                if q.id not in picked_ids
            ]
            rng.shuffle(candidates)
            for question in candidates[:shortfall]:
                take(question)
                shortfall -= 1

        if len(picked) < total:
            raise InsufficientQuestions(
                message=(
                    f"Only {len(picked)} questions available for the selected "
                    f"learning outcomes, {total} requested"
                )
            )

        # Phase 4: shuffled order, exactly total items
        rng.shuffle(picked)
        result = picked[:total]
        logger.debug(
            f"Selected {len(result)} questions from {len(selected_los)} LOs "
            f"(budgets={budgets}, seed={seed})"
        )
        return result

    def derive_ratio(self, questions: Sequence[Question]) -> Dict[str, int]:
        """
        Difficulty percentages present in ``questions`` rounded to integers;
        the rounding remainder goes to the most common level.
        """
        if not questions:
            raise ValidationError("Cannot derive a difficulty ratio without questions")

        counts = {LEVEL_EASY: 0, LEVEL_MEDIUM: 0, LEVEL_HARD: 0}
        for question in questions:
            level = question.level_id if question.level_id in counts else LEVEL_MEDIUM
            counts[level] += 1

        total = len(questions)
        ratio = {
            LEVEL_KEYS[level]: _round_half_up(count * 100 / total)
            for level, count in counts.items()
        }
        remainder = 100 - sum(ratio.values())
        if remainder:
            largest = max(counts, key=lambda level: counts[level])
            ratio[LEVEL_KEYS[largest]] += remainder
        return ratio
