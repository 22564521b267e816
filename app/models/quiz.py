# app/models/quiz.py
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from app.core.database import Base, JSONType

QUIZ_STATUS_PENDING = "pending"
QUIZ_STATUS_ACTIVE = "active"
QUIZ_STATUS_FINISHED = "finished"

QUIZ_MODES = ("assessment", "practice", "code_practice")


class Quiz(Base):
    __tablename__ = "quizzes"

    id = Column(Integer, primary_key=True, index=True)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    duration = Column(Integer, nullable=True)  # minutes
    pin = Column(String(6), unique=True, nullable=True, index=True)

    # pending -> active -> finished
    status = Column(String(20), default=QUIZ_STATUS_PENDING, nullable=False, index=True)
    quiz_mode = Column(String(20), default="assessment", nullable=False)

    # Feature flags
    gamification_enabled = Column(Boolean, default=False, nullable=False)
    avatar_system_enabled = Column(Boolean, default=True, nullable=False)
    real_time_leaderboard_enabled = Column(Boolean, default=False, nullable=False)
    show_leaderboard = Column(Boolean, default=False, nullable=False)

    current_question_index = Column(Integer, default=0, nullable=False)
    code_config = Column(JSONType, nullable=True)

    start_time = Column(DateTime(timezone=True), nullable=True)
    end_time = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
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
        return f"<Quiz(id={self.id}, name='{self.name}', status='{self.status}')>"


class QuizQuestion(Base):
    __tablename__ = "quiz_questions"
    __table_args__ = (UniqueConstraint("quiz_id", "question_id"),)

    id = Column(Integer, primary_key=True, index=True)
    quiz_id = Column(
        Integer, ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    question_id = Column(Integer, ForeignKey("questions.id"), nullable=False, index=True)
    order_index = Column(Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<QuizQuestion(quiz_id={self.quiz_id}, question_id={self.question_id}, order={self.order_index})>"
