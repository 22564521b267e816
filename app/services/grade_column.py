import logging
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.decorator import transactional
from app.core.exceptions import NotFoundError, StateConflictError, ValidationError
from app.models.course import Course
from app.models.course_grade import CourseGradeColumn, CourseGradeColumnQuiz
from app.models.quiz import Quiz
from app.schemas.course_grade import (
    AssignQuizzesRequest,
    GradeColumnCreate,
    GradeColumnUpdate,
)

logger = logging.getLogger(__name__)

MAX_TOTAL_WEIGHT = 100
ASSIGNMENT_WEIGHT_TOLERANCE = 0.01


def serialize_column(column: CourseGradeColumn) -> dict:
    return {
        "id": column.id,
        "course_id": column.course_id,
        "column_name": column.column_name,
        "weight_percentage": float(column.weight_percentage),
        "column_order": column.column_order,
        "description": column.description,
        "is_active": column.is_active,
        "quizzes": [
            {
                "quiz_id": a.quiz_id,
                "quiz_name": a.quiz.name if a.quiz else None,
                "weight_percentage": (
                    float(a.weight_percentage) if a.weight_percentage is not None else None
                ),
            }
            for a in column.quiz_assignments
        ],
    }


def _check_weight(weight: Optional[float]) -> float:
    if weight is None or weight <= 0 or weight > MAX_TOTAL_WEIGHT:
        raise ValidationError("weight_percentage must be greater than 0 and at most 100")
    return float(weight)


class CourseGradeColumnService:
    def __init__(self, db: Session):
        self.db = db

    def _get_course(self, course_id: int) -> Course:
        course = self.db.query(Course).filter(Course.id == course_id).first()
        if not course:
            raise NotFoundError("Course not found")
        return course

    def _get_column(self, course_id: int, column_id: int) -> CourseGradeColumn:
        column = (
            self.db.query(CourseGradeColumn)
            .filter(CourseGradeColumn.id == column_id, CourseGradeColumn.course_id == course_id)
            .first()
        )
        if not column:
            raise NotFoundError("Grade column not found")
        return column

    def active_weight_total(self, course_id: int, exclude_column_id: Optional[int] = None) -> float:
        query = self.db.query(func.coalesce(func.sum(CourseGradeColumn.weight_percentage), 0)).filter(
            CourseGradeColumn.course_id == course_id, CourseGradeColumn.is_active.is_(True)
        )
        if exclude_column_id is not None:
            query = query.filter(CourseGradeColumn.id != exclude_column_id)
        return float(query.scalar() or 0)

    def _ensure_capacity(self, course_id: int, weight: float, exclude_column_id: Optional[int] = None):
        current_total = self.active_weight_total(course_id, exclude_column_id)
        if current_total + weight > MAX_TOTAL_WEIGHT:
            raise ValidationError(
                f"Total weight would exceed 100% (current: {current_total:g}%, adding: {weight:g}%)",
                current_total=current_total,
            )

    # ==================== Columns ====================

    def list_columns(self, course_id: int) -> dict:
        self._get_course(course_id)
        columns = (
            self.db.query(CourseGradeColumn)
            .filter(CourseGradeColumn.course_id == course_id)
            .order_by(CourseGradeColumn.column_order, CourseGradeColumn.id)
            .all()
        )
        total_weight = round(
            sum(float(c.weight_percentage) for c in columns if c.is_active), 2
        )
        return {
            "columns": [serialize_column(c) for c in columns],
            "total_weight": total_weight,
            "is_weight_valid": total_weight == MAX_TOTAL_WEIGHT,
        }

    @transactional
    def create_column(self, course_id: int, column_in: GradeColumnCreate) -> dict:
        self._get_course(course_id)
        if not column_in.column_name or not column_in.column_name.strip() or not column_in.weight_percentage:
            raise ValidationError("column_name and weight_percentage are required")
        weight = _check_weight(column_in.weight_percentage)
        self._ensure_capacity(course_id, weight)

        column_order = column_in.column_order
        if column_order is None:
            max_order = (
                self.db.query(func.max(CourseGradeColumn.column_order))
                .filter(CourseGradeColumn.course_id == course_id)
                .scalar()
            )
            column_order = (max_order or 0) + 1

        column = CourseGradeColumn(
            course_id=course_id,
            column_name=column_in.column_name.strip(),
            weight_percentage=weight,
            column_order=column_order,
            description=column_in.description,
            is_active=True,
        )
        self.db.add(column)
        self.db.flush()
        self.db.refresh(column)
        logger.info(f"Grade column '{column.column_name}' ({weight:g}%) added to course {course_id}")
        return serialize_column(column)

    @transactional
    def update_column(self, course_id: int, column_id: int, column_in: GradeColumnUpdate) -> dict:
        column = self._get_column(course_id, column_id)
        changes = column_in.model_dump(exclude_unset=True)

        if "column_name" in changes and not (changes["column_name"] or "").strip():
            raise ValidationError("column_name cannot be empty")

        weight = float(column.weight_percentage)
        if changes.get("weight_percentage") is not None:
            weight = _check_weight(changes["weight_percentage"])
        is_active = changes.get("is_active", column.is_active)
        if is_active and ("weight_percentage" in changes or "is_active" in changes):
            self._ensure_capacity(course_id, weight, exclude_column_id=column.id)

        for field, value in changes.items():
            if value is None and field in ("weight_percentage", "column_name", "is_active"):
                continue
            setattr(column, field, value.strip() if field == "column_name" else value)

        self.db.flush()
        self.db.refresh(column)
        return serialize_column(column)

    @transactional
    def delete_column(self, course_id: int, column_id: int) -> bool:
        column = self._get_column(course_id, column_id)
        assigned = (
            self.db.query(CourseGradeColumnQuiz)
            .filter(CourseGradeColumnQuiz.column_id == column.id)
            .count()
        )
        if assigned:
            raise StateConflictError(
                "Cannot delete a grade column that still has quizzes assigned",
                hint="unassign every quiz from the column first",
            )
        self.db.delete(column)
        return True

    # ==================== Quiz assignment ====================

    def _validate_quiz(self, column: CourseGradeColumn, quiz_id: int) -> Optional[str]:
        quiz = self.db.query(Quiz).filter(Quiz.id == quiz_id).first()
        if not quiz:
            return "Quiz not found"
        if quiz.course_id != column.course_id:
            return "Quiz belongs to another course"
        other = (
            self.db.query(CourseGradeColumnQuiz)
            .join(CourseGradeColumn, CourseGradeColumn.id == CourseGradeColumnQuiz.column_id)
            .filter(
                CourseGradeColumnQuiz.quiz_id == quiz_id,
                CourseGradeColumn.course_id == column.course_id,
                CourseGradeColumnQuiz.column_id != column.id,
            )
            .first()
        )
        if other:
            return "Quiz is already assigned to another grade column"
        return None

    @transactional
    def assign_quizzes(self, course_id: int, column_id: int, request: AssignQuizzesRequest) -> dict:
        assignments = [a.model_dump() for a in request.quiz_assignments or []]
        if not assignments and request.quiz_ids:
            assignments = [{"quiz_id": qid, "weight_percentage": None} for qid in request.quiz_ids]
        if not assignments:
            raise ValidationError("quiz_assignments or quiz_ids is required")

        for assignment in assignments:
            weight = assignment.get("weight_percentage")
            if weight is not None and (weight <= 0 or weight > MAX_TOTAL_WEIGHT):
                raise ValidationError("weight_percentage must be between 0.01 and 100")

        total_weight = sum(a["weight_percentage"] or 0 for a in assignments)
        if total_weight > 0 and abs(total_weight - MAX_TOTAL_WEIGHT) > ASSIGNMENT_WEIGHT_TOLERANCE:
            raise ValidationError(
                f"Quiz weights must add up to 100% (current: {total_weight:g}%)",
                total_weight=total_weight,
            )

        column = self._get_column(course_id, column_id)
        errors = []
        for assignment in assignments:
            message = self._validate_quiz(column, assignment["quiz_id"])
            if message:
                errors.append({"quiz_id": assignment["quiz_id"], "error": message})
        if errors:
            raise ValidationError("Some quizzes cannot be assigned", errors=errors)

        existing = {a.quiz_id: a for a in column.quiz_assignments}
        if request.mode == "replace":
            for row in existing.values():
                self.db.delete(row)
            self.db.flush()
            self.db.expire(column, ["quiz_assignments"])
            existing = {}

        for assignment in assignments:
            row = existing.get(assignment["quiz_id"])
            if row is not None:
                if assignment["weight_percentage"]:
                    row.weight_percentage = assignment["weight_percentage"]
                continue
            self.db.add(
                CourseGradeColumnQuiz(
                    column_id=column.id,
                    quiz_id=assignment["quiz_id"],
                    weight_percentage=assignment["weight_percentage"] or None,
                )
            )

        self.db.flush()
        self.db.expire(column, ["quiz_assignments"])
        logger.info(f"Assigned {len(assignments)} quizzes to grade column {column.id} ({request.mode})")
        return serialize_column(column)

    @transactional
    def unassign_quizzes(self, course_id: int, column_id: int, quiz_ids: Optional[List[int]] = None) -> dict:
        column = self._get_column(course_id, column_id)
        query = self.db.query(CourseGradeColumnQuiz).filter(CourseGradeColumnQuiz.column_id == column.id)
        if quiz_ids:
            query = query.filter(CourseGradeColumnQuiz.quiz_id.in_(quiz_ids))
        removed = query.delete(synchronize_session=False)
        return {"column_id": column.id, "unassigned_quizzes": removed, "quiz_ids": quiz_ids or []}
