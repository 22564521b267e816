"""
HTTP surface: auth, response envelope and a full quiz round trip.
"""

import threading

import pytest
from starlette.websockets import WebSocketDisconnect

from app.core.security import jwt_manager
from app.routers import ws
from tests.conftest import correct_answer


@pytest.fixture
def teacher(factory):
    return factory.user("Teacher", role="teacher")


@pytest.fixture
def student(factory):
    return factory.user("Ana")


@pytest.fixture
def course(factory):
    return factory.course()


@pytest.fixture
def questions(factory, course):
    lo = factory.lo(course)
    return [factory.question(lo, "easy"), factory.question(lo, "medium")]


def test_requires_token(client):
    response = client.get("/quizzes/")

    assert response.status_code == 401
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Not authenticated"


def test_invalid_token(client):
    response = client.get("/quizzes/", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401


def test_students_cannot_author_quizzes(client, auth_headers, student, course, questions):
    response = client.post(
        "/quizzes/",
        json={"course_id": course.id, "name": "Nope", "duration": 5, "question_ids": [questions[0].id]},
        headers=auth_headers(student),
    )

    assert response.status_code == 403


def test_app_errors_use_the_envelope(client, auth_headers, teacher):
    response = client.get("/quizzes/9999", headers=auth_headers(teacher))

    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "Quiz not found", "error": "not_found"}


def test_request_validation_errors(client, auth_headers, teacher):
    response = client.post("/quizzes/1/join", json={}, headers=auth_headers(teacher))

    assert response.status_code == 422
    assert response.json()["error"] == "validation_error"


def test_quiz_round_trip(client, auth_headers, broadcaster, teacher, student, course, questions):
    created = client.post(
        "/quizzes/",
        json={
            "course_id": course.id,
            "name": "Round trip",
            "duration": 10,
            "question_ids": [q.id for q in questions],
        },
        headers=auth_headers(teacher),
    )
    assert created.status_code == 201
    quiz = created.json()["data"]

    started = client.post(f"/quizzes/{quiz['id']}/start", headers=auth_headers(teacher))
    assert started.status_code == 200
    assert started.json()["data"]["total_questions"] == 2

    joined = client.post(
        f"/quizzes/{quiz['id']}/join", json={"pin": quiz["pin"]}, headers=auth_headers(student)
    )
    assert joined.status_code == 200
    assert joined.json()["message"] == "Joined quiz"

    for question in questions:
        answered = client.post(
            "/answers/realtime",
            json={
                "quizId": quiz["id"],
                "questionId": question.id,
                "answerId": correct_answer(question).id,
            },
            headers=auth_headers(student),
        )
        assert answered.status_code == 200
        assert answered.json()["data"]["isCorrect"] is True
    assert answered.json()["data"]["completed"] is True

    ended = client.post(f"/quizzes/{quiz['id']}/end", headers=auth_headers(teacher))
    assert ended.status_code == 200
    assert ended.json()["data"]["synced"] == 1

    again = client.post(f"/quizzes/{quiz['id']}/end", headers=auth_headers(teacher))
    assert again.status_code == 400
    assert again.json()["error"] == "state_conflict"

    mine = client.get(f"/quizzes/{quiz['id']}/my-result", headers=auth_headers(student))
    assert mine.json()["data"]["score"] == 10.0
    assert mine.json()["data"]["status"] == "completed"

    board = client.get(f"/quizzes/{quiz['id']}/leaderboard", headers=auth_headers(student))
    assert board.json()["data"]["leaderboard"][0]["user_id"] == student.id


def test_wrong_pin_over_http(client, auth_headers, factory, student, course, questions):
    quiz = factory.quiz(course, questions)

    response = client.post(f"/quizzes/{quiz.id}/join", json={"pin": "000000"}, headers=auth_headers(student))

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid quiz PIN"


def test_grade_columns_over_http(client, auth_headers, teacher, course):
    url = f"/courses/{course.id}/grade-columns"

    first = client.post(url, json={"column_name": "Labs", "weight_percentage": 70}, headers=auth_headers(teacher))
    assert first.status_code == 201

    over = client.post(url, json={"column_name": "Exam", "weight_percentage": 40}, headers=auth_headers(teacher))
    assert over.status_code == 400
    assert over.json()["current_total"] == 70

    listing = client.get(url, headers=auth_headers(teacher)).json()["data"]
    assert listing["total_weight"] == 70
    assert listing["is_weight_valid"] is False


def test_students_only_see_their_own_grade(client, auth_headers, factory, student, course):
    other = factory.user("Bo")

    response = client.get(f"/courses/{course.id}/grades/{other.id}", headers=auth_headers(student))

    assert response.status_code == 403


def test_final_exam_over_http(client, auth_headers, teacher, student, course):
    url = f"/courses/{course.id}/grades/{student.id}/final-exam"

    bad = client.put(url, json={"final_exam_score": 12}, headers=auth_headers(teacher))
    assert bad.status_code == 400

    good = client.put(url, json={"final_exam_score": 8.5}, headers=auth_headers(teacher))
    assert good.status_code == 200
    assert good.json()["data"]["final_exam_score"] == 8.5


def test_quiz_socket_looks_up_user_and_quiz_off_the_event_loop(
    client, monkeypatch, broadcaster, factory, student, course, questions
):
    quiz = factory.quiz(course, questions)
    token = jwt_manager.create_access_token(student)
    calls = []
    real_run_in_threadpool = ws.run_in_threadpool

    async def tracking(func, *args):
        loop_thread = threading.get_ident()

        def run(*inner):
            calls.append((func.__name__, threading.get_ident() != loop_thread))
            return func(*inner)

        return await real_run_in_threadpool(run, *args)

    monkeypatch.setattr(ws, "run_in_threadpool", tracking)

    with client.websocket_connect(f"/ws/quizzes/{quiz.id}?token={token}") as socket:
        socket.send_text("ping")
        assert socket.receive_json()["event"] == "pong"

    assert calls == [("_authenticate", True), ("_quiz_exists", True)]
    assert broadcaster.connected == [
        [f"quiz:{quiz.id}", f"quiz:{quiz.id}:students", f"quiz:{quiz.id}:{student.id}"]
    ]


def test_quiz_socket_rejects_bad_token(client, factory, course, questions):
    quiz = factory.quiz(course, questions)

    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(f"/ws/quizzes/{quiz.id}?token=nope") as socket:
            socket.receive_json()
