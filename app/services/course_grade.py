import logging
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.core.decorator import transactional
from app.core.exceptions import NotFoundError, ValidationError
from app.models.course import Course
from app.models.course_enrollment import CourseEnrollment
from app.models.course_grade import (
    CourseGradeColumn,
    CourseGradeColumnQuiz,
    CourseGradeResult,
    CourseGradeResultHistory,
)
from app.models.quiz_result import RESULT_IN_PROGRESS, QuizResult
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)

GRADE_BANDS = (
    (9.0, "A+"),
    (8.5, "A"),
    (8.0, "B+"),
    (7.0, "B"),
    (6.5, "C+"),
    (5.5, "C"),
    (5.0, "D+"),
    (4.0, "D"),
)
FINAL_EXAM_MIN = 0
FINAL_EXAM_MAX = 10
WEIGHT_TOLERANCE = 0.001


def letter_grade(score: float) -> str:
    for threshold, letter in GRADE_BANDS:
        if score >= threshold:
            return letter
    return "F"


def _plain_mean(scores: Iterable[float]) -> float:
    scores = list(scores)
    return round(sum(scores) / len(scores), 2)


def weighted_column_average(
    weights: Dict[int, Optional[float]], scores: Dict[int, float]
) -> Optional[float]:
    """
    Average quiz scores for one grade column.

    ``weights`` maps every assigned quiz to its weight (None when unweighted),
    ``scores`` maps quizzes the student has a result for to that score.
    Weights whose positive sum is not 100 are rescaled to 100 first.
    """
    if not weights or not scores:
        return None

    if all(w is None for w in weights.values()):
        return _plain_mean(scores.values())

    weight_map = {quiz_id: float(w) for quiz_id, w in weights.items() if w}
    weight_sum = sum(weight_map.values())
    if weight_sum > 0 and abs(weight_sum - 100) > WEIGHT_TOLERANCE:
        weight_map = {quiz_id: w / weight_sum * 100 for quiz_id, w in weight_map.items()}

    weighted_sum = 0.0
    applied_weight = 0.0
    for quiz_id, score in scores.items():
        weight = weight_map.get(quiz_id)
        if weight:
            weighted_sum += score * weight
            applied_weight += weight

    if applied_weight == 0:
        return _plain_mean(scores.values())
    return round(weighted_sum / applied_weight, 2)


def combine_scores(
    process_average: Optional[float], final_exam_score: Optional[float], grade_config: dict
) -> Tuple[Optional[float], Optional[str]]:
    """Total and letter grade; both None until process and final exam are known."""
    if process_average is None or final_exam_score is None:
        return None, None
    process_weight = float(grade_config["process_weight"]) / 100
    final_weight = float(grade_config["final_exam_weight"]) / 100
    total = round(process_average * process_weight + final_exam_score * final_weight, 2)
    return total, letter_grade(total)


def _as_float(value) -> Optional[float]:
    return float(value) if value is not None else None


def serialize_grade_result(result: CourseGradeResult) -> dict:
    return {
        "id": result.id,
        "course_id": result.course_id,
        "user_id": result.user_id,
        "user_name": result.user.full_name if result.user else None,
        "column_scores": result.column_scores or {},
        "process_average": _as_float(result.process_average),
        "final_exam_score": _as_float(result.final_exam_score),
        "total_score": _as_float(result.total_score),
        "grade": result.grade,
        "last_calculated_at": result.last_calculated_at,
    }


class CourseGradeService:
    def __init__(self, db: Session):
        self.db = db

    def _get_course(self, course_id: int) -> Course:
        course = self.db.query(Course).filter(Course.id == course_id).first()
        if not course:
            raise NotFoundError("Course not found")
        return course

    # ==================== Calculations ====================

    def compute_column_average(self, column_id: int, user_id: int) -> Optional[float]:
        assignments = (
            self.db.query(CourseGradeColumnQuiz)
            .filter(CourseGradeColumnQuiz.column_id == column_id)
            .all()
        )
        if not assignments:
            return None

        weights = {a.quiz_id: _as_float(a.weight_percentage) for a in assignments}
        results = (
            self.db.query(QuizResult)
            .filter(
                QuizResult.user_id == user_id,
                QuizResult.quiz_id.in_(list(weights)),
                QuizResult.status != RESULT_IN_PROGRESS,
            )
            .all()
        )
        scores = {r.quiz_id: float(r.score or 0) for r in results}
        return weighted_column_average(weights, scores)

    def compute_process_average(self, course_id: int, user_id: int) -> dict:
        columns = (
            self.db.query(CourseGradeColumn)
            .filter(CourseGradeColumn.course_id == course_id, CourseGradeColumn.is_active.is_(True))
            .order_by(CourseGradeColumn.column_order)
            .all()
        )

        column_scores = {}
        weighted_sum = 0.0
        total_weight = 0.0
        for column in columns:
            average = self.compute_column_average(column.id, user_id)
            weight = float(column.weight_percentage)
            column_scores[str(column.id)] = {
                "column_name": column.column_name,
                "weight_percentage": weight,
                "average_score": average,
            }
            # Columns without data do not count towards the average
            if average is not None:
                weighted_sum += average * weight
                total_weight += weight

        process_average = round(weighted_sum / total_weight, 2) if total_weight > 0 else None
        return {"column_scores": column_scores, "process_average": process_average}

    def compute_final_grade(
        self, course_id: int, user_id: int, final_exam_score: Optional[float] = None
    ) -> dict:
        course = self._get_course(course_id)
        grade_config = course.effective_grade_config
        process = self.compute_process_average(course_id, user_id)
        total, grade = combine_scores(process["process_average"], final_exam_score, grade_config)
        return {
            "column_scores": process["column_scores"],
            "process_average": process["process_average"],
            "final_exam_score": final_exam_score,
            "total_score": total,
            "grade": grade,
            "grade_config": grade_config,
        }

    # ==================== Persistence ====================

    def _snapshot(self, result: CourseGradeResult) -> None:
        self.db.add(
            CourseGradeResultHistory(
                result_id=result.id,
                snapshot={
                    "column_scores": result.column_scores,
                    "process_average": _as_float(result.process_average),
                    "final_exam_score": _as_float(result.final_exam_score),
                    "total_score": _as_float(result.total_score),
                    "grade": result.grade,
                    "last_calculated_at": (
                        result.last_calculated_at.isoformat() if result.last_calculated_at else None
                    ),
                },
            )
        )

    def _save(self, course_id: int, user_id: int, final_exam_score: Optional[float]) -> CourseGradeResult:
        grade_data = self.compute_final_grade(course_id, user_id, final_exam_score)
        values = {
            "column_scores": grade_data["column_scores"],
            "process_average": grade_data["process_average"],
            "final_exam_score": grade_data["final_exam_score"],
            "total_score": grade_data["total_score"],
            "grade": grade_data["grade"],
            "last_calculated_at": utcnow(),
        }

        result = (
            self.db.query(CourseGradeResult)
            .filter(CourseGradeResult.course_id == course_id, CourseGradeResult.user_id == user_id)
            .first()
        )
        if result:
            self._snapshot(result)
            for field, value in values.items():
                setattr(result, field, value)
        else:
            result = CourseGradeResult(course_id=course_id, user_id=user_id, **values)
            self.db.add(result)
            self.db.flush()
            self._snapshot(result)
        self.db.flush()
        return result

    @transactional
    def save_or_update(
        self, course_id: int, user_id: int, final_exam_score: Optional[float] = None
    ) -> dict:
        result = self._save(course_id, user_id, final_exam_score)
        return serialize_grade_result(result)

    def update_final_exam_score(self, course_id: int, user_id: int, final_exam_score: float) -> dict:
        if final_exam_score < FINAL_EXAM_MIN or final_exam_score > FINAL_EXAM_MAX:
            raise ValidationError(
                f"Final exam score must be between {FINAL_EXAM_MIN} and {FINAL_EXAM_MAX}"
            )
        return self.save_or_update(course_id, user_id, final_exam_score)

    @transactional
    def recalculate_student(self, course_id: int, user_id: int) -> dict:
        existing = (
            self.db.query(CourseGradeResult)
            .filter(CourseGradeResult.course_id == course_id, CourseGradeResult.user_id == user_id)
            .first()
        )
        final_exam = _as_float(existing.final_exam_score) if existing else None
        return serialize_grade_result(self._save(course_id, user_id, final_exam))

    @transactional
    def recalculate_all(self, course_id: int) -> List[dict]:
        """Recompute every enrolled student, keeping their final exam score."""
        self._get_course(course_id)
        enrollments = (
            self.db.query(CourseEnrollment)
            .filter(CourseEnrollment.course_id == course_id)
            .order_by(CourseEnrollment.user_id)
            .all()
        )

        results = []
        for enrollment in enrollments:
            existing = (
                self.db.query(CourseGradeResult)
                .filter(
                    CourseGradeResult.course_id == course_id,
                    CourseGradeResult.user_id == enrollment.user_id,
                )
                .first()
            )
            final_exam = _as_float(existing.final_exam_score) if existing else None
            result = self._save(course_id, enrollment.user_id, final_exam)
            results.append(serialize_grade_result(result))

        logger.info(f"Recalculated grades for {len(results)} students in course {course_id}")
        return results

    # ==================== Queries ====================

    def get_results(self, course_id: int) -> List[dict]:
        self._get_course(course_id)
        results = (
            self.db.query(CourseGradeResult)
            .filter(CourseGradeResult.course_id == course_id)
            .order_by(CourseGradeResult.user_id)
            .all()
        )
        return [serialize_grade_result(r) for r in results]

    def get_student_result(self, course_id: int, user_id: int) -> dict:
        result = (
            self.db.query(CourseGradeResult)
            .filter(CourseGradeResult.course_id == course_id, CourseGradeResult.user_id == user_id)
            .first()
        )
        if not result:
            raise NotFoundError("No grade result for this student")
        return serialize_grade_result(result)
