# app/models/question.py
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.sql import func

from app.core.database import Base

# Seeded by app.core.init; ids are relied upon by the question selector
LEVEL_EASY = 1
LEVEL_MEDIUM = 2
LEVEL_HARD = 3

LEVEL_NAMES = {LEVEL_EASY: "easy", LEVEL_MEDIUM: "medium", LEVEL_HARD: "hard"}


class Level(Base):
    __tablename__ = "levels"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), nullable=False, unique=True)

    def __repr__(self):
        return f"<Level(id={self.id}, name='{self.name}')>"


class LO(Base):
    """Learning outcome; questions are tagged with exactly one."""

    __tablename__ = "los"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    subject_id = Column(Integer, ForeignKey("subjects.id"), nullable=True, index=True)

    def __repr__(self):
        return f"<LO(id={self.id}, name='{self.name}')>"


class Question(Base):
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)

    question_text = Column(Text, nullable=False)
    explanation = Column(Text, nullable=True)
    question_type = Column(Integer, nullable=False, default=1)  # 4 = code exercise

    lo_id = Column(Integer, ForeignKey("los.id"), nullable=False, index=True)
    level_id = Column(Integer, ForeignKey("levels.id"), nullable=False, index=True)

    created_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    @property
    def difficulty(self) -> str:
        if self.level is not None:
            return self.level.name.lower()
        return LEVEL_NAMES.get(self.level_id, "medium")

    def __repr__(self):
        return f"<Question(id={self.id}, lo_id={self.lo_id}, level_id={self.level_id})>"


class Answer(Base):
    __tablename__ = "answers"

    id = Column(Integer, primary_key=True, index=True)
    question_id = Column(
        Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    answer_text = Column(Text, nullable=False)
    is_correct = Column(Boolean, default=False, nullable=False)

    def __repr__(self):
        return f"<Answer(id={self.id}, question_id={self.question_id}, is_correct={self.is_correct})>"
