from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RealtimeAnswerSubmit(BaseModel):
    """Accepts both camelCase (socket clients) and snake_case keys."""

    model_config = ConfigDict(populate_by_name=True)

    quiz_id: int = Field(..., alias="quizId")
    question_id: int = Field(..., alias="questionId")
    answer_id: int = Field(..., alias="answerId")
    start_time: Optional[int] = Field(None, alias="startTime")  # epoch ms, last resort only
    user_id: Optional[int] = Field(None, alias="userId")
