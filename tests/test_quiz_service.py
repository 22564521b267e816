"""
Quiz authoring: creation paths, mode rules, listing and edits.
"""

import pytest

from app.core.exceptions import NotFoundError, StateConflictError, ValidationError
from app.models import Quiz, QuizResult
from app.schemas.quiz import QuizCreate, QuizUpdate
from app.services.quiz import mode_flags


@pytest.fixture
def course(factory):
    return factory.course()


@pytest.fixture
def bank(factory, course):
    lo = factory.lo(course, "Sorting")
    return [factory.question(lo, level) for level in ("easy", "easy", "medium", "hard")]


def test_create_from_question_ids(quiz_service, broadcaster, course, bank):
    data = quiz_service.create_quiz(
        QuizCreate(course_id=course.id, name="Week 1", duration=10, question_ids=[q.id for q in bank[:3]])
    )

    assert data["status"] == "pending"
    assert len(data["pin"]) == 6
    assert [q["question_id"] for q in data["questions"]] == [q.id for q in bank[:3]]
    assert all("is_correct" not in a for q in data["questions"] for a in q["answers"])
    assert broadcaster.named("quizCreated")[0][0] == "quizzes"


def test_question_cache_is_primed_on_create(quiz_service, runtime, course, bank):
    data = quiz_service.create_quiz(
        QuizCreate(course_id=course.id, name="Week 1", duration=10, question_ids=[bank[0].id])
    )

    cached = runtime.sessions.get_questions(data["id"])
    assert [q["question_id"] for q in cached] == [bank[0].id]


def test_unknown_question_ids_are_reported(quiz_service, db, course, bank):
    with pytest.raises(NotFoundError) as exc:
        quiz_service.create_quiz(
            QuizCreate(course_id=course.id, name="Week 1", duration=10, question_ids=[bank[0].id, 9999])
        )

    assert "9999" in exc.value.message
    assert db.query(Quiz).count() == 0


def test_create_with_inline_questions(quiz_service, factory, course):
    lo = factory.lo(course)

    data = quiz_service.create_quiz(
        QuizCreate(
            course_id=course.id,
            name="Pop quiz",
            duration=5,
            inline_questions=[
                {
                    "question_text": "2 + 2?",
                    "lo_id": lo.id,
                    "difficulty": "easy",
                    "answers": [
                        {"answer_text": "4", "is_correct": True},
                        {"answer_text": "5"},
                    ],
                }
            ],
        )
    )

    assert len(data["questions"]) == 1
    assert data["questions"][0]["difficulty"] == "easy"


def test_inline_question_needs_a_correct_answer(quiz_service, factory, db, course):
    lo = factory.lo(course)

    with pytest.raises(ValidationError):
        quiz_service.create_quiz(
            QuizCreate(
                course_id=course.id,
                name="Pop quiz",
                duration=5,
                inline_questions=[
                    {"question_text": "?", "lo_id": lo.id, "answers": [{"answer_text": "no"}]}
                ],
            )
        )
    assert db.query(Quiz).count() == 0


def test_create_from_criteria_uses_course_los(quiz_service, course, bank):
    data = quiz_service.create_quiz(
        QuizCreate(
            course_id=course.id,
            name="Drawn",
            duration=10,
            question_criteria={
                "total_questions": 3,
                "difficulty_ratio": {"easy": 34, "medium": 33, "hard": 33},
            },
        )
    )

    assert len(data["questions"]) == 3
    assert len({q["question_id"] for q in data["questions"]}) == 3


def test_deprecated_subject_id_maps_to_course(quiz_service, course, bank):
    data = quiz_service.create_quiz(
        QuizCreate(subject_id=course.subject_id, name="Legacy", duration=10, question_ids=[bank[0].id])
    )

    assert data["course_id"] == course.id


def test_missing_course(quiz_service):
    with pytest.raises(NotFoundError):
        quiz_service.create_quiz(QuizCreate(course_id=404, name="Nope", duration=10))
    with pytest.raises(ValidationError):
        quiz_service.create_quiz(QuizCreate(name="Nope", duration=10))


def test_duration_must_be_positive(quiz_service, course):
    with pytest.raises(ValidationError):
        quiz_service.create_quiz(QuizCreate(course_id=course.id, name="Zero", duration=0))


def test_mode_flags():
    assert mode_flags("practice", None) == {
        "gamification_enabled": True,
        "real_time_leaderboard_enabled": True,
    }
    assert mode_flags("assessment", False)["gamification_enabled"] is False
    with pytest.raises(ValidationError):
        mode_flags("assessment", True)
    with pytest.raises(ValidationError):
        mode_flags("tournament", None)


def test_code_practice_requires_full_config(quiz_service, factory, course):
    lo = factory.lo(course)
    code_question = factory.question(lo, "easy", question_type=4)

    with pytest.raises(ValidationError):
        quiz_service.create_quiz(
            QuizCreate(
                course_id=course.id,
                name="Code",
                duration=20,
                quiz_mode="code_practice",
                code_config={"allow_multiple_submissions": True},
                question_ids=[code_question.id],
            )
        )

    data = quiz_service.create_quiz(
        QuizCreate(
            course_id=course.id,
            name="Code",
            duration=20,
            quiz_mode="code_practice",
            code_config={
                "allow_multiple_submissions": True,
                "show_test_results": True,
                "enable_ai_analysis": False,
                "time_limit_per_question": 300,
            },
            question_ids=[code_question.id],
        )
    )
    assert data["code_config"]["time_limit_per_question"] == 300


def test_generated_pins_are_unique(quiz_service, factory, course):
    factory.quiz(course, [], pin="123456")

    class FixedThenFree:
        values = iter([123456, 123456, 654321])

        def randint(self, low, high):
            return next(self.values)

    quiz_service.rng = FixedThenFree()
    assert quiz_service.generate_pin() == "654321"


def test_list_quizzes_paginates(quiz_service, factory, course):
    for _ in range(3):
        factory.quiz(course, [])

    page = quiz_service.list_quizzes(page=2, limit=2)

    assert page["total"] == 3
    assert page["totalPages"] == 2
    assert len(page["quizzes"]) == 1


def test_empty_list_has_zero_pages(quiz_service):
    page = quiz_service.list_quizzes()

    assert page == {"quizzes": [], "total": 0, "page": 1, "size": 10, "totalPages": 0}


def test_list_cache_is_invalidated_on_create(quiz_service, course, bank):
    assert quiz_service.list_quizzes()["total"] == 0

    quiz_service.create_quiz(
        QuizCreate(course_id=course.id, name="Fresh", duration=10, question_ids=[bank[0].id])
    )

    assert quiz_service.list_quizzes()["total"] == 1


def test_list_filters(quiz_service, factory, course):
    other = factory.course("Databases")
    factory.quiz(course, [], status="active")
    factory.quiz(other, [])

    assert quiz_service.list_quizzes(status="active")["total"] == 1
    assert quiz_service.list_quizzes(course_id=other.id)["total"] == 1


def test_update_quiz(quiz_service, broadcaster, factory, course):
    quiz = factory.quiz(course, [])

    data = quiz_service.update_quiz(quiz.id, QuizUpdate(name="  Renamed ", quiz_mode="practice"))

    assert data["name"] == "Renamed"
    assert data["gamification_enabled"] is True
    assert broadcaster.named("quizUpdated")[0][0] == f"quiz:{quiz.id}"


def test_active_quiz_cannot_be_edited_or_deleted(quiz_service, factory, course):
    quiz = factory.quiz(course, [], status="active")

    with pytest.raises(StateConflictError) as exc:
        quiz_service.update_quiz(quiz.id, QuizUpdate(name="Late change"))
    assert exc.value.hint

    with pytest.raises(StateConflictError):
        quiz_service.delete_quiz(quiz.id)


def test_update_rejects_inverted_window(quiz_service, factory, course):
    quiz = factory.quiz(course, [])

    with pytest.raises(ValidationError):
        quiz_service.update_quiz(
            quiz.id,
            QuizUpdate(start_time="2026-05-01T10:00:00Z", end_time="2026-05-01T09:00:00Z"),
        )


def test_delete_quiz_removes_results(quiz_service, db, factory, course, bank):
    quiz = factory.quiz(course, bank[:2], status="finished")
    factory.result(quiz, factory.user("Ana"), 8)

    assert quiz_service.delete_quiz(quiz.id) is True
    assert db.query(Quiz).count() == 0
    assert db.query(QuizResult).count() == 0
