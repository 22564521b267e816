import fnmatch
import os
import time
import uuid

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["QUIZ_SYNC_DELAY_SECONDS"] = "0"
os.environ["QUIZ_SYNC_LOCK_WAIT_SECONDS"] = "0.3"
os.environ["DEBUG"] = "false"
os.environ["PRODUCTION"] = "false"

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import LockNotOwnedError

from app.core.cache import CacheService
from app.core.database import Base, SessionLocal, engine, get_db
from app.core.init import init_levels
from app.core.security import jwt_manager
from app.models import (
    LO,
    Answer,
    Course,
    CourseEnrollment,
    Question,
    Quiz,
    QuizQuestion,
    QuizResult,
    Subject,
    User,
)
from app.models.question import LEVEL_EASY, LEVEL_HARD, LEVEL_MEDIUM
from app.services.broadcaster import Broadcaster
from app.services.runtime import QuizRuntime

LEVELS = {"easy": LEVEL_EASY, "medium": LEVEL_MEDIUM, "hard": LEVEL_HARD}


class FakeLock:
    """Mirrors redis.lock.Lock: token-owned key, blocking acquire with a timeout."""

    def __init__(self, redis, name, timeout=None, blocking_timeout=None, sleep=0.01):
        self.redis = redis
        self.name = name
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout
        self.sleep = sleep
        self.token = None

    def acquire(self, blocking=True, blocking_timeout=None):
        wait = self.blocking_timeout if blocking_timeout is None else blocking_timeout
        deadline = time.monotonic() + (wait or 0)
        token = uuid.uuid4().hex
        while not self.redis.set(self.name, token, ex=self.timeout, nx=True):
            if not blocking or time.monotonic() >= deadline:
                return False
            time.sleep(self.sleep)
        self.token = token
        return True

    def release(self):
        if self.token is None or self.redis.get(self.name) != self.token:
            raise LockNotOwnedError("Cannot release a lock that's no longer owned")
        self.redis.delete(self.name)
        self.token = None


class FakeRedis:
    """In-memory stand-in for the handful of redis commands the app uses."""

    def __init__(self):
        self.store = {}
        self.expiry = {}

    def _alive(self, key):
        deadline = self.expiry.get(key)
        if deadline is not None and deadline <= time.monotonic():
            self.store.pop(key, None)
            self.expiry.pop(key, None)
        return key in self.store

    def get(self, key):
        return self.store.get(key) if self._alive(key) else None

    def set(self, key, value, ex=None, nx=False, keepttl=False):
        if nx and self._alive(key):
            return None
        self.store[key] = value
        if ex:
            self.expiry[key] = time.monotonic() + ex
        elif not keepttl:
            self.expiry.pop(key, None)
        return True

    def expire(self, key, seconds):
        if not self._alive(key):
            return False
        self.expiry[key] = time.monotonic() + seconds
        return True

    def lock(self, name, timeout=None, blocking_timeout=None, sleep=0.01):
        return FakeLock(self, name, timeout=timeout, blocking_timeout=blocking_timeout, sleep=sleep)

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self._alive(key):
                removed += 1
            self.store.pop(key, None)
            self.expiry.pop(key, None)
        return removed

    def scan_iter(self, match="*"):
        return [key for key in list(self.store) if self._alive(key) and fnmatch.fnmatchcase(key, match)]

    def ttl(self, key):
        deadline = self.expiry.get(key)
        return int(deadline - time.monotonic()) if deadline else -1

    def ping(self):
        return True


class FakeBroadcaster(Broadcaster):
    def __init__(self):
        self.events = []
        self.connected = []

    async def connect(self, websocket, rooms):
        await websocket.accept()
        self.connected.append(list(rooms))

    def disconnect(self, websocket):
        pass

    def emit(self, room, event, payload):
        self.events.append((room, event, payload))

    def named(self, event):
        return [(room, payload) for room, name, payload in self.events if name == event]


class FakeCompletionWatcher:
    def __init__(self):
        self.scheduled = []
        self.cancelled = []

    def schedule(self, quiz_id):
        self.scheduled.append(quiz_id)

    def cancel(self, quiz_id):
        self.cancelled.append(quiz_id)


class Factory:
    def __init__(self, db):
        self.db = db

    def user(self, name="Student", role="student"):
        user = User(full_name=name, email=f"{name.lower().replace(' ', '.')}@example.com", role=role)
        self.db.add(user)
        self.db.commit()
        return user

    def course(self, name="Algorithms", grade_config=None):
        subject = Subject(name=f"{name} subject")
        self.db.add(subject)
        self.db.flush()
        course = Course(name=name, subject_id=subject.id, grade_config=grade_config)
        self.db.add(course)
        self.db.commit()
        return course

    def lo(self, course, name="LO"):
        lo = LO(name=name, subject_id=course.subject_id)
        self.db.add(lo)
        self.db.commit()
        return lo

    def question(self, lo, difficulty="medium", question_type=1, text=None):
        question = Question(
            question_text=text or f"{difficulty} question for {lo.name}",
            lo_id=lo.id,
            level_id=LEVELS[difficulty],
            question_type=question_type,
        )
        question.answers = [
            Answer(answer_text="right", is_correct=True),
            Answer(answer_text="wrong", is_correct=False),
        ]
        self.db.add(question)
        self.db.commit()
        return question

    def quiz(self, course, questions, quiz_mode="assessment", duration=30, pin=None, status="pending"):
        quiz = Quiz(
            course_id=course.id,
            name="Weekly quiz",
            duration=duration,
            pin=pin or str(100000 + self.db.query(Quiz).count() + 1),
            status=status,
            quiz_mode=quiz_mode,
            gamification_enabled=quiz_mode == "practice",
            real_time_leaderboard_enabled=quiz_mode == "practice",
        )
        self.db.add(quiz)
        self.db.flush()
        for index, question in enumerate(questions):
            self.db.add(QuizQuestion(quiz_id=quiz.id, question_id=question.id, order_index=index))
        self.db.commit()
        self.db.refresh(quiz)
        return quiz

    def result(self, quiz, user, score, status="completed"):
        result = QuizResult(quiz_id=quiz.id, user_id=user.id, score=score, status=status)
        self.db.add(result)
        self.db.commit()
        return result

    def enroll(self, course, user):
        self.db.add(CourseEnrollment(course_id=course.id, user_id=user.id))
        self.db.commit()


def correct_answer(question):
    return next(a for a in question.answers if a.is_correct)


def wrong_answer(question):
    return next(a for a in question.answers if not a.is_correct)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    init_levels(session)
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def redis_client():
    return FakeRedis()


@pytest.fixture
def cache(redis_client):
    return CacheService(redis_client)


@pytest.fixture
def broadcaster():
    return FakeBroadcaster()


@pytest.fixture
def watcher():
    return FakeCompletionWatcher()


@pytest.fixture
def runtime(cache, broadcaster, watcher):
    return QuizRuntime(cache=cache, broadcaster=broadcaster, completion_watcher=watcher)


@pytest.fixture
def quiz_service(db, runtime):
    return runtime.quiz_service(db)


@pytest.fixture
def session_service(db, runtime):
    return runtime.session_service(db)


@pytest.fixture
def client(db, runtime):
    from main import app

    def override_get_db():
        yield db

    app.state.runtime = runtime
    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def make(user):
        return {"Authorization": f"Bearer {jwt_manager.create_access_token(user)}"}

    return make
