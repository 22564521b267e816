"""
Models package initialization
Import all models and setup relationships
"""

from .course import Course, Subject
from .course_enrollment import CourseEnrollment
from .course_grade import (
    CourseGradeColumn,
    CourseGradeColumnQuiz,
    CourseGradeResult,
    CourseGradeResultHistory,
)
from .question import LO, Answer, Level, Question
from .quiz import Quiz, QuizQuestion
from .quiz_result import QuizResult, UserQuestionHistory

# Import and setup relationships
from .relations import setup_relationships
from .user import User

# Setup all relationships after models are imported
setup_relationships()

# Make models available at package level
__all__ = [
    "Answer",
    "Course",
    "CourseEnrollment",
    "CourseGradeColumn",
    "CourseGradeColumnQuiz",
    "CourseGradeResult",
    "CourseGradeResultHistory",
    "Level",
    "LO",
    "Question",
    "Quiz",
    "QuizQuestion",
    "QuizResult",
    "Subject",
    "User",
    "UserQuestionHistory",
]
