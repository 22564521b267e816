# app/schemas/quiz.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

# ==================== Question Input Schemas ====================


class DifficultyRatio(BaseModel):
    easy: float = 0
    medium: float = 0
    hard: float = 0


class QuestionCriteria(BaseModel):
    lo_ids: Optional[List[int]] = None  # Defaults to the course subject's LOs
    total_questions: int
    difficulty_ratio: DifficultyRatio
    type: Optional[int] = None


class InlineAnswer(BaseModel):
    answer_text: str = Field(..., min_length=1)
    is_correct: bool = False


class InlineQuestion(BaseModel):
    question_text: str = Field(..., min_length=1)
    lo_id: int
    level_id: Optional[int] = None
    difficulty: Optional[str] = None  # easy / medium / hard
    question_type: int = 1
    explanation: Optional[str] = None
    answers: List[InlineAnswer]


class CodeConfig(BaseModel):
    allow_multiple_submissions: Optional[bool] = None
    show_test_results: Optional[bool] = None
    enable_ai_analysis: Optional[bool] = None
    time_limit_per_question: Optional[int] = None


# ==================== Quiz Schemas ====================


class QuizCreate(BaseModel):
    course_id: Optional[int] = None
    subject_id: Optional[int] = None  # Deprecated: mapped to the subject's course
    name: Optional[str] = None
    duration: Optional[int] = None  # minutes
    quiz_mode: str = "assessment"
    gamification_enabled: Optional[bool] = None
    avatar_system_enabled: Optional[bool] = None
    real_time_leaderboard_enabled: Optional[bool] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    code_config: Optional[CodeConfig] = None

    question_ids: Optional[List[int]] = None
    inline_questions: Optional[List[InlineQuestion]] = None
    question_criteria: Optional[QuestionCriteria] = None


class QuizUpdate(BaseModel):
    course_id: Optional[int] = None
    name: Optional[str] = None
    duration: Optional[int] = None
    quiz_mode: Optional[str] = None
    gamification_enabled: Optional[bool] = None
    avatar_system_enabled: Optional[bool] = None
    real_time_leaderboard_enabled: Optional[bool] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


class QuizJoinRequest(BaseModel):
    pin: str = Field(..., min_length=1, max_length=10)


class QuizResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    course_id: int
    name: str
    duration: Optional[int] = None
    pin: Optional[str] = None
    status: str
    quiz_mode: str
    gamification_enabled: bool
    avatar_system_enabled: bool
    real_time_leaderboard_enabled: bool
    show_leaderboard: bool
    current_question_index: int
    code_config: Optional[dict] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
