"""
Grade columns, quiz assignments and course grade aggregation.
"""

import pytest

from app.core.exceptions import StateConflictError, ValidationError
from app.models import CourseGradeColumn, CourseGradeResultHistory
from app.schemas.course_grade import AssignQuizzesRequest, GradeColumnCreate, GradeColumnUpdate
from app.services.course_grade import (
    CourseGradeService,
    combine_scores,
    letter_grade,
    weighted_column_average,
)
from app.services.grade_column import CourseGradeColumnService


@pytest.fixture
def course(factory):
    return factory.course(grade_config={"process_weight": 40, "final_exam_weight": 60})


@pytest.fixture
def columns(db):
    return CourseGradeColumnService(db)


@pytest.fixture
def grades(db):
    return CourseGradeService(db)


@pytest.fixture
def student(factory):
    return factory.user("Ana")


def _column(columns, course, name, weight):
    return columns.create_column(course.id, GradeColumnCreate(column_name=name, weight_percentage=weight))


# ==================== Pure calculations ====================


def test_unweighted_column_uses_plain_mean():
    assert weighted_column_average({1: None, 2: None}, {1: 80, 2: 60}) == 70


def test_column_average_without_results():
    assert weighted_column_average({1: 50, 2: 50}, {}) is None
    assert weighted_column_average({}, {1: 9}) is None


def test_weights_not_summing_to_100_are_normalized():
    scores = {1: 9.0, 2: 6.0}

    assert weighted_column_average({1: 30, 2: 10}, scores) == weighted_column_average({1: 75, 2: 25}, scores)
    assert weighted_column_average({1: 75, 2: 25}, scores) == 8.25


def test_unweighted_quiz_is_left_out_of_weighted_mean():
    assert weighted_column_average({1: 100, 2: None}, {1: 8.0, 2: 2.0}) == 8.0


def test_plain_mean_fallback_when_no_weighted_results():
    assert weighted_column_average({1: 100, 2: None}, {2: 4.0}) == 4.0


def test_combine_scores():
    config = {"process_weight": 40, "final_exam_weight": 60}

    assert combine_scores(75, 80, config)[0] == 78.0
    assert combine_scores(7.5, 8.0, config) == (7.8, "B")
    assert combine_scores(None, 8.0, config) == (None, None)


@pytest.mark.parametrize(
    "score,letter",
    [(9.0, "A+"), (8.5, "A"), (8.0, "B+"), (7.99, "B"), (6.5, "C+"), (5.5, "C"), (5.0, "D+"), (4.0, "D"), (3.99, "F")],
)
def test_letter_grade_bands(score, letter):
    assert letter_grade(score) == letter


# ==================== Columns ====================


def test_column_weights_cannot_exceed_100(db, columns, course):
    _column(columns, course, "Labs", 60)

    with pytest.raises(ValidationError) as exc:
        _column(columns, course, "Midterm", 50)

    assert exc.value.extra["current_total"] == 60
    assert db.query(CourseGradeColumn).count() == 1


def test_update_excludes_the_edited_column(columns, course):
    labs = _column(columns, course, "Labs", 60)
    _column(columns, course, "Midterm", 40)

    updated = columns.update_column(course.id, labs["id"], GradeColumnUpdate(weight_percentage=55))
    assert updated["weight_percentage"] == 55

    with pytest.raises(ValidationError):
        columns.update_column(course.id, labs["id"], GradeColumnUpdate(weight_percentage=70))


def test_list_columns_reports_weight_validity(columns, course):
    _column(columns, course, "Labs", 60)
    assert columns.list_columns(course.id)["is_weight_valid"] is False

    _column(columns, course, "Exam", 40)
    listing = columns.list_columns(course.id)

    assert listing["total_weight"] == 100
    assert listing["is_weight_valid"] is True
    assert [c["column_order"] for c in listing["columns"]] == [1, 2]


def test_column_needs_name_and_weight(columns, course):
    with pytest.raises(ValidationError):
        columns.create_column(course.id, GradeColumnCreate(column_name="Labs"))
    with pytest.raises(ValidationError):
        columns.create_column(course.id, GradeColumnCreate(column_name=" ", weight_percentage=10))


def test_assign_replace_and_merge(columns, factory, course):
    first, second, third = (factory.quiz(course, []) for _ in range(3))
    column = _column(columns, course, "Quizzes", 50)

    columns.assign_quizzes(
        course.id,
        column["id"],
        AssignQuizzesRequest(
            quiz_assignments=[
                {"quiz_id": first.id, "weight_percentage": 60},
                {"quiz_id": second.id, "weight_percentage": 40},
            ]
        ),
    )
    merged = columns.assign_quizzes(
        course.id, column["id"], AssignQuizzesRequest(quiz_ids=[third.id], mode="merge")
    )
    assert sorted(q["quiz_id"] for q in merged["quizzes"]) == [first.id, second.id, third.id]

    replaced = columns.assign_quizzes(
        course.id, column["id"], AssignQuizzesRequest(quiz_ids=[third.id], mode="replace")
    )
    assert [q["quiz_id"] for q in replaced["quizzes"]] == [third.id]


def test_assignment_weights_must_sum_to_100(columns, factory, course):
    first, second = factory.quiz(course, []), factory.quiz(course, [])
    column = _column(columns, course, "Quizzes", 50)

    with pytest.raises(ValidationError):
        columns.assign_quizzes(
            course.id,
            column["id"],
            AssignQuizzesRequest(
                quiz_assignments=[
                    {"quiz_id": first.id, "weight_percentage": 60},
                    {"quiz_id": second.id, "weight_percentage": 30},
                ]
            ),
        )


def test_assignment_errors_are_listed(columns, factory, course):
    other_course = factory.course("Databases")
    foreign = factory.quiz(other_course, [])
    column = _column(columns, course, "Quizzes", 50)

    with pytest.raises(ValidationError) as exc:
        columns.assign_quizzes(course.id, column["id"], AssignQuizzesRequest(quiz_ids=[foreign.id, 999]))

    assert [e["quiz_id"] for e in exc.value.extra["errors"]] == [foreign.id, 999]


def test_quiz_lives_in_one_column_per_course(columns, factory, course):
    quiz = factory.quiz(course, [])
    labs = _column(columns, course, "Labs", 50)
    exams = _column(columns, course, "Exams", 50)
    columns.assign_quizzes(course.id, labs["id"], AssignQuizzesRequest(quiz_ids=[quiz.id]))

    with pytest.raises(ValidationError):
        columns.assign_quizzes(course.id, exams["id"], AssignQuizzesRequest(quiz_ids=[quiz.id]))


def test_column_with_quizzes_cannot_be_deleted(columns, factory, course):
    quiz = factory.quiz(course, [])
    column = _column(columns, course, "Labs", 50)
    columns.assign_quizzes(course.id, column["id"], AssignQuizzesRequest(quiz_ids=[quiz.id]))

    with pytest.raises(StateConflictError):
        columns.delete_column(course.id, column["id"])

    columns.unassign_quizzes(course.id, column["id"])
    assert columns.delete_column(course.id, column["id"]) is True


# ==================== Aggregation ====================


@pytest.fixture
def graded_course(columns, factory, course, student):
    """Labs (60%): two unweighted quizzes; Exam (40%): one quiz."""
    lab_a, lab_b, midterm = (factory.quiz(course, [], status="finished") for _ in range(3))
    labs = _column(columns, course, "Labs", 60)
    exam = _column(columns, course, "Exam", 40)
    columns.assign_quizzes(course.id, labs["id"], AssignQuizzesRequest(quiz_ids=[lab_a.id, lab_b.id]))
    columns.assign_quizzes(course.id, exam["id"], AssignQuizzesRequest(quiz_ids=[midterm.id]))
    factory.result(lab_a, student, 8)
    factory.result(lab_b, student, 6)
    factory.result(midterm, student, 9)
    return {"labs": labs, "exam": exam, "quizzes": (lab_a, lab_b, midterm)}


def test_column_average(grades, graded_course, student):
    assert grades.compute_column_average(graded_course["labs"]["id"], student.id) == 7.0


def test_in_progress_results_are_ignored(grades, factory, graded_course, student):
    other = factory.user("Bo")
    lab_a = graded_course["quizzes"][0]
    factory.result(lab_a, other, 10, status="in_progress")

    assert grades.compute_column_average(graded_course["labs"]["id"], other.id) is None


def test_process_average(grades, graded_course, course, student):
    process = grades.compute_process_average(course.id, student.id)

    # 7.0 * 60% + 9.0 * 40%
    assert process["process_average"] == 7.8
    assert process["column_scores"][str(graded_course["labs"]["id"])]["average_score"] == 7.0


def test_final_grade_breakdown(grades, graded_course, course, student):
    breakdown = grades.compute_final_grade(course.id, student.id, 8.0)

    assert breakdown["total_score"] == round(7.8 * 0.4 + 8.0 * 0.6, 2)
    assert breakdown["grade"] == "B"


def test_final_exam_range(grades, graded_course, course, student):
    with pytest.raises(ValidationError):
        grades.update_final_exam_score(course.id, student.id, 11)

    result = grades.update_final_exam_score(course.id, student.id, 8.0)
    assert result["final_exam_score"] == 8.0


def test_every_overwrite_keeps_a_snapshot(db, grades, graded_course, course, student):
    grades.save_or_update(course.id, student.id, 7.0)
    grades.save_or_update(course.id, student.id, 9.0)

    snapshots = db.query(CourseGradeResultHistory).order_by(CourseGradeResultHistory.id).all()
    assert len(snapshots) == 2
    assert snapshots[-1].snapshot["final_exam_score"] == 7.0


def test_recalculation_keeps_final_exam(grades, factory, graded_course, course, student):
    factory.enroll(course, student)
    grades.update_final_exam_score(course.id, student.id, 8.0)
    factory.result(graded_course["quizzes"][2], factory.user("Bo"), 2)

    results = grades.recalculate_all(course.id)

    assert len(results) == 1
    assert results[0]["final_exam_score"] == 8.0
    assert grades.recalculate_student(course.id, student.id)["final_exam_score"] == 8.0
    assert grades.get_student_result(course.id, student.id)["total_score"] == results[0]["total_score"]
