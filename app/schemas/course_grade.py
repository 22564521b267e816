# app/schemas/course_grade.py
from typing import List, Literal, Optional

from pydantic import BaseModel

# ==================== Grade Column Schemas ====================


class GradeColumnCreate(BaseModel):
    column_name: Optional[str] = None
    weight_percentage: Optional[float] = None
    description: Optional[str] = None
    column_order: Optional[int] = None


class GradeColumnUpdate(BaseModel):
    column_name: Optional[str] = None
    weight_percentage: Optional[float] = None
    description: Optional[str] = None
    column_order: Optional[int] = None
    is_active: Optional[bool] = None


class QuizAssignment(BaseModel):
    quiz_id: int
    weight_percentage: Optional[float] = None


class AssignQuizzesRequest(BaseModel):
    quiz_assignments: Optional[List[QuizAssignment]] = None
    quiz_ids: Optional[List[int]] = None
    mode: Literal["replace", "merge"] = "replace"


class UnassignQuizzesRequest(BaseModel):
    quiz_ids: Optional[List[int]] = None  # None or empty = all


# ==================== Grade Result Schemas ====================


class FinalExamScoreUpdate(BaseModel):
    final_exam_score: float


class GradeCalculateRequest(BaseModel):
    final_exam_score: Optional[float] = None
