# app/models/course_grade.py
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from app.core.database import Base, JSONType


class CourseGradeColumn(Base):
    """A weighted bucket (e.g. "Midterm", "Lab") in a course's grading scheme."""

    __tablename__ = "course_grade_columns"

    id = Column(Integer, primary_key=True, index=True)
    course_id = Column(
        Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True
    )

    column_name = Column(String(255), nullable=False)
    weight_percentage = Column(Numeric(5, 2), nullable=False)  # 0 < w <= 100
    column_order = Column(Integer, nullable=False, default=1)
    description = Column(String(500), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self):
        return f"<CourseGradeColumn(id={self.id}, name='{self.column_name}', weight={self.weight_percentage})>"


class CourseGradeColumnQuiz(Base):
    __tablename__ = "course_grade_column_quizzes"
    __table_args__ = (UniqueConstraint("column_id", "quiz_id"),)

    id = Column(Integer, primary_key=True, index=True)
    column_id = Column(
        Integer,
        ForeignKey("course_grade_columns.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    quiz_id = Column(
        Integer, ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    weight_percentage = Column(Numeric(5, 2), nullable=True)  # None = unweighted

    assigned_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self):
        return f"<CourseGradeColumnQuiz(column_id={self.column_id}, quiz_id={self.quiz_id})>"


class CourseGradeResult(Base):
    __tablename__ = "course_grade_results"
    __table_args__ = (UniqueConstraint("course_id", "user_id"),)

    id = Column(Integer, primary_key=True, index=True)
    course_id = Column(
        Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # {column_id: {"column_name", "weight_percentage", "average_score"}}
    column_scores = Column(JSONType, nullable=True)
    process_average = Column(Numeric(6, 2), nullable=True)
    final_exam_score = Column(Numeric(6, 2), nullable=True)
    total_score = Column(Numeric(6, 2), nullable=True)
    grade = Column(String(5), nullable=True)

    last_calculated_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self):
        return f"<CourseGradeResult(course_id={self.course_id}, user_id={self.user_id}, total={self.total_score})>"


class CourseGradeResultHistory(Base):
    """Append-only snapshots taken before each CourseGradeResult overwrite."""

    __tablename__ = "course_grade_result_history"

    id = Column(Integer, primary_key=True, index=True)
    result_id = Column(
        Integer,
        ForeignKey("course_grade_results.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    snapshot = Column(JSONType, nullable=False)
    changed_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self):
        return f"<CourseGradeResultHistory(result_id={self.result_id}, changed_at={self.changed_at})>"
