from typing import Optional

from sqlalchemy.orm import Session

from app.core.cache import CacheService
from app.services.broadcaster import Broadcaster, WebSocketBroadcaster
from app.services.quiz import QuizService
from app.services.quiz_finalizer import QuizFinalizer
from app.services.quiz_session import QuizSessionService
from app.services.realtime_registry import RealtimeRegistry
from app.services.session_store import SessionStore


class QuizRuntime:
    """
    Process-wide collaborators of the quiz services.

    Built once at startup and stored on ``app.state.runtime``; request
    handlers and scheduled jobs get per-session services from it.
    """

    def __init__(
        self,
        cache: Optional[CacheService] = None,
        broadcaster: Optional[Broadcaster] = None,
        completion_watcher=None,
    ):
        self.cache = cache or CacheService()
        self.sessions = SessionStore(self.cache)
        self.registry = RealtimeRegistry(self.cache)
        self.broadcaster = broadcaster or WebSocketBroadcaster()
        self.completion_watcher = completion_watcher

    def quiz_service(self, db: Session) -> QuizService:
        return QuizService(db, self.sessions, self.registry, self.broadcaster)

    def finalizer(self, db: Session) -> QuizFinalizer:
        return QuizFinalizer(db, self.registry, self.cache)

    def session_service(self, db: Session) -> QuizSessionService:
        return QuizSessionService(
            db,
            registry=self.registry,
            sessions=self.sessions,
            broadcaster=self.broadcaster,
            finalizer=self.finalizer(db),
            completion_watcher=self.completion_watcher,
        )
