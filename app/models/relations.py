# app/models/relations.py

from sqlalchemy.orm import relationship

# Import all relevant models
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
from .user import User


def setup_relationships():
    """
    Configure all SQLAlchemy relationships between models.
    """

    # --- Taxonomy ---

    Subject.courses = relationship("Course", back_populates="subject")
    Course.subject = relationship("Subject", back_populates="courses")

    Subject.los = relationship("LO", back_populates="subject")
    LO.subject = relationship("Subject", back_populates="los")

    # --- Question Bank ---

    LO.questions = relationship("Question", back_populates="lo")
    Question.lo = relationship("LO", back_populates="questions")

    Level.questions = relationship("Question", back_populates="level")
    Question.level = relationship("Level", back_populates="questions", lazy="joined")

    Question.answers = relationship(
        "Answer",
        back_populates="question",
        cascade="all, delete-orphan",
        order_by="Answer.id",
    )
    Answer.question = relationship("Question", back_populates="answers")

    # --- Quizzes ---

    Course.quizzes = relationship("Quiz", back_populates="course")
    Quiz.course = relationship("Course", back_populates="quizzes")

    Quiz.quiz_questions = relationship(
        "QuizQuestion",
        back_populates="quiz",
        cascade="all, delete-orphan",
        order_by="QuizQuestion.order_index",
    )
    QuizQuestion.quiz = relationship("Quiz", back_populates="quiz_questions")
    QuizQuestion.question = relationship("Question")

    Quiz.results = relationship(
        "QuizResult", back_populates="quiz", cascade="all, delete-orphan"
    )
    QuizResult.quiz = relationship("Quiz", back_populates="results")
    QuizResult.user = relationship("User")

    UserQuestionHistory.question = relationship("Question")

    # --- Enrollment ---

    CourseEnrollment.user = relationship("User")
    CourseEnrollment.course = relationship("Course", backref="enrollments")

    # --- Grading ---

    Course.grade_columns = relationship(
        "CourseGradeColumn",
        back_populates="course",
        cascade="all, delete-orphan",
        order_by="CourseGradeColumn.column_order",
    )
    CourseGradeColumn.course = relationship("Course", back_populates="grade_columns")

    CourseGradeColumn.quiz_assignments = relationship(
        "CourseGradeColumnQuiz",
        back_populates="column",
        cascade="all, delete-orphan",
    )
    CourseGradeColumnQuiz.column = relationship(
        "CourseGradeColumn", back_populates="quiz_assignments"
    )
    CourseGradeColumnQuiz.quiz = relationship("Quiz")

    CourseGradeResult.user = relationship("User")
    CourseGradeResult.history = relationship(
        "CourseGradeResultHistory",
        back_populates="result",
        cascade="all, delete-orphan",
        order_by="CourseGradeResultHistory.id",
    )
    CourseGradeResultHistory.result = relationship(
        "CourseGradeResult", back_populates="history"
    )
