# app/models/quiz_result.py
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

from app.core.database import Base

RESULT_IN_PROGRESS = "in_progress"
RESULT_COMPLETED = "completed"
RESULT_TERMINATED = "terminated"


class QuizResult(Base):
    """Durable projection of a participant's live state; one row per (quiz, user)."""

    __tablename__ = "quiz_results"
    __table_args__ = (UniqueConstraint("quiz_id", "user_id"),)

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    quiz_id = Column(
        Integer, ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False, index=True
    )

    score = Column(Numeric(6, 2), nullable=False, default=0)  # 0 - 10 scale
    status = Column(String(20), nullable=False, default=RESULT_IN_PROGRESS)
    completion_time = Column(Integer, nullable=True)  # seconds

    # Filled by the end-of-quiz sync
    raw_total_points = Column(Integer, nullable=True)
    max_points = Column(Integer, nullable=True)
    bonuses_total = Column(Integer, nullable=True)
    synced_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    start_time = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    update_time = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self):
        return f"<QuizResult(id={self.id}, quiz_id={self.quiz_id}, user_id={self.user_id}, status='{self.status}')>"


class UserQuestionHistory(Base):
    """One row per answer attempt, written when a quiz is synced."""

    __tablename__ = "user_question_history"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    quiz_id = Column(
        Integer, ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    question_id = Column(Integer, ForeignKey("questions.id"), nullable=False, index=True)
    selected_answer = Column(Integer, ForeignKey("answers.id"), nullable=True)

    is_correct = Column(Boolean, nullable=False, default=False)
    time_spent = Column(Integer, nullable=True)  # milliseconds
    attempt_index = Column(Integer, nullable=False, default=1)
    points_earned = Column(Integer, nullable=False, default=0)

    attempt_date = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self):
        return f"<UserQuestionHistory(user_id={self.user_id}, question_id={self.question_id}, correct={self.is_correct})>"
