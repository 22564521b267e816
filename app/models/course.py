# app/models/course.py
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.sql import func

from app.core.database import Base, JSONType

DEFAULT_GRADE_CONFIG = {"final_exam_weight": 50, "process_weight": 50}


class Subject(Base):
    __tablename__ = "subjects"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)

    created_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self):
        return f"<Subject(id={self.id}, name='{self.name}')>"


class Course(Base):
    __tablename__ = "courses"

    id = Column(Integer, primary_key=True, index=True)

    # Basic Info
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)

    subject_id = Column(Integer, ForeignKey("subjects.id"), nullable=True, index=True)
    teacher_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    # {"final_exam_weight": 50, "process_weight": 50}
    grade_config = Column(JSONType, nullable=True)

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

    @property
    def effective_grade_config(self) -> dict:
        config = dict(DEFAULT_GRADE_CONFIG)
        if self.grade_config:
            config.update(
                {k: v for k, v in self.grade_config.items() if v is not None}
            )
        return config

    def __repr__(self):
        return f"<Course(id={self.id}, name='{self.name}')>"
