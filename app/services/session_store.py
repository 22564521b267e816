import logging
from typing import Any, List, Optional

from app.core.cache import CacheService
from app.core.config import settings

logger = logging.getLogger(__name__)


def questions_key(quiz_id: int) -> str:
    return f"quiz:{quiz_id}:questions"


def state_key(quiz_id: int) -> str:
    return f"quiz:{quiz_id}:state"


def session_key(session_id: str) -> str:
    return f"quiz_session:{session_id}"


def list_key(page, limit, status, course_id, search, sort) -> str:
    return f"quizzes:{page}:{limit}:{status or 'all'}:{course_id or 'all'}:{search or ''}:{sort or 'default'}"


class SessionStore:
    """
    TTL cache for in-flight quiz state.

    Shared entries are never updated in place: structural changes delete
    them and the next reader repopulates.
    """

    def __init__(self, cache: CacheService):
        self.cache = cache
        self.ttl = settings.quiz_cache_ttl

    # --- question list ---

    def cache_questions(self, quiz_id: int, questions: List[dict]) -> None:
        self.cache.set(questions_key(quiz_id), questions, ttl=self.ttl)

    def get_questions(self, quiz_id: int) -> Optional[List[dict]]:
        return self.cache.get(questions_key(quiz_id))

    # --- quiz state ---

    def cache_state(self, quiz_id: int, state: dict) -> None:
        self.cache.set(state_key(quiz_id), state, ttl=self.ttl)

    def get_state(self, quiz_id: int) -> Optional[dict]:
        return self.cache.get(state_key(quiz_id))

    # --- per-user sessions ---

    def save_session(self, session: dict, ttl: int) -> None:
        # Expired sessions are simply left to lapse
        self.cache.set(session_key(session["session_id"]), session, ttl=max(1, int(ttl)))

    def get_session(self, session_id: str) -> Optional[dict]:
        return self.cache.get(session_key(session_id))

    def delete_session(self, session_id: str) -> None:
        self.cache.delete(session_key(session_id))

    # --- quiz lists ---

    def get_list(self, key: str) -> Optional[Any]:
        return self.cache.get(key)

    def cache_list(self, key: str, value: Any) -> None:
        self.cache.set(key, value, ttl=self.ttl)

    # --- invalidation ---

    def invalidate_lists(self) -> None:
        self.cache.delete_pattern("quizzes*")

    def invalidate_quiz(self, quiz_id: int) -> None:
        """Drop every quiz-scoped cache entry plus the list caches."""
        self.cache.delete(f"quiz:{quiz_id}", questions_key(quiz_id), state_key(quiz_id))
        self.cache.delete_pattern(f"quiz:{quiz_id}:*")
        self.invalidate_lists()
        logger.debug(f"Invalidated caches for quiz {quiz_id}")
