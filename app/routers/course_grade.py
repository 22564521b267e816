# app/routers/course_grade.py
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.dependencies import get_current_teacher, get_current_user
from app.models.user import User
from app.schemas.common import ApiResponse, ok
from app.schemas.course_grade import (
    AssignQuizzesRequest,
    FinalExamScoreUpdate,
    GradeCalculateRequest,
    GradeColumnCreate,
    GradeColumnUpdate,
    UnassignQuizzesRequest,
)
from app.services.course_grade import CourseGradeService
from app.services.grade_column import CourseGradeColumnService

router = APIRouter(
    prefix="/courses/{course_id}",
    tags=["Course Grades"],
    responses={404: {"description": "Not found"}},
)


# ==================== Grade Columns ====================


@router.get("/grade-columns", response_model=ApiResponse)
def list_grade_columns(
    course_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return ok(CourseGradeColumnService(db).list_columns(course_id))


@router.post(
    "/grade-columns", response_model=ApiResponse, status_code=status.HTTP_201_CREATED
)
def create_grade_column(
    course_id: int,
    column_in: GradeColumnCreate,
    db: Session = Depends(get_db),
    current_teacher: User = Depends(get_current_teacher),
):
    """
    Add a weighted grade column. The active columns of a course may not
    add up to more than 100%.
    """
    column = CourseGradeColumnService(db).create_column(course_id, column_in)
    return ok(column, "Grade column created successfully")


@router.put("/grade-columns/{column_id}", response_model=ApiResponse)
def update_grade_column(
    course_id: int,
    column_id: int,
    column_in: GradeColumnUpdate,
    db: Session = Depends(get_db),
    current_teacher: User = Depends(get_current_teacher),
):
    column = CourseGradeColumnService(db).update_column(course_id, column_id, column_in)
    return ok(column, "Grade column updated successfully")


@router.delete("/grade-columns/{column_id}", response_model=ApiResponse)
def delete_grade_column(
    course_id: int,
    column_id: int,
    db: Session = Depends(get_db),
    current_teacher: User = Depends(get_current_teacher),
):
    CourseGradeColumnService(db).delete_column(course_id, column_id)
    return ok(message="Grade column deleted successfully")


@router.post("/grade-columns/{column_id}/quizzes", response_model=ApiResponse)
def assign_quizzes(
    course_id: int,
    column_id: int,
    request_in: AssignQuizzesRequest,
    db: Session = Depends(get_db),
    current_teacher: User = Depends(get_current_teacher),
):
    """Assign quizzes to a column; ``mode`` is replace (default) or merge."""
    column = CourseGradeColumnService(db).assign_quizzes(course_id, column_id, request_in)
    return ok(column, "Quizzes assigned successfully")


@router.delete("/grade-columns/{column_id}/quizzes", response_model=ApiResponse)
def unassign_quizzes(
    course_id: int,
    column_id: int,
    request_in: UnassignQuizzesRequest,
    db: Session = Depends(get_db),
    current_teacher: User = Depends(get_current_teacher),
):
    data = CourseGradeColumnService(db).unassign_quizzes(
        course_id, column_id, request_in.quiz_ids
    )
    return ok(data, "Quizzes unassigned successfully")


# ==================== Grades ====================


@router.get("/grades", response_model=ApiResponse)
def list_grades(
    course_id: int,
    db: Session = Depends(get_db),
    current_teacher: User = Depends(get_current_teacher),
):
    return ok(CourseGradeService(db).get_results(course_id))


@router.post("/grades/recalculate", response_model=ApiResponse)
def recalculate_grades(
    course_id: int,
    db: Session = Depends(get_db),
    current_teacher: User = Depends(get_current_teacher),
):
    """Recompute every enrolled student, keeping existing final exam scores."""
    results = CourseGradeService(db).recalculate_all(course_id)
    return ok(results, f"Recalculated grades for {len(results)} students")


@router.get("/grades/{user_id}", response_model=ApiResponse)
def get_student_grade(
    course_id: int,
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if not current_user.is_teacher and current_user.id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Students can only view their own grades",
        )
    return ok(CourseGradeService(db).get_student_result(course_id, user_id))


@router.post("/grades/{user_id}/calculate", response_model=ApiResponse)
def calculate_student_grade(
    course_id: int,
    user_id: int,
    request_in: GradeCalculateRequest,
    db: Session = Depends(get_db),
    current_teacher: User = Depends(get_current_teacher),
):
    service = CourseGradeService(db)
    if request_in.final_exam_score is not None:
        result = service.update_final_exam_score(course_id, user_id, request_in.final_exam_score)
    else:
        result = service.recalculate_student(course_id, user_id)
    return ok(result, "Grade calculated successfully")


@router.put("/grades/{user_id}/final-exam", response_model=ApiResponse)
def update_final_exam_score(
    course_id: int,
    user_id: int,
    score_in: FinalExamScoreUpdate,
    db: Session = Depends(get_db),
    current_teacher: User = Depends(get_current_teacher),
):
    result = CourseGradeService(db).update_final_exam_score(
        course_id, user_id, score_in.final_exam_score
    )
    return ok(result, "Final exam score updated successfully")
