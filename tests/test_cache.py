"""
Redis-backed cache helpers and locks.
"""

import time

import pytest

from app.core.exceptions import ExternalStoreError, LockTimeoutError


def test_lock_is_released_on_exit(cache, redis_client):
    with cache.lock("lock:demo", ttl=5):
        assert redis_client.get("lock:demo") is not None

    assert redis_client.get("lock:demo") is None


def test_lock_times_out_while_held(cache):
    with cache.lock("lock:demo", ttl=5):
        with pytest.raises(LockTimeoutError) as exc:
            with cache.lock("lock:demo", ttl=5, wait=0.05):
                pass

    assert isinstance(exc.value, ExternalStoreError)
    assert exc.value.status_code == 409


def test_expired_lock_taken_by_another_owner_is_not_released(cache, redis_client):
    with cache.lock("lock:demo", ttl=0.05):
        time.sleep(0.1)
        # The first holder's ttl lapsed; someone else now owns the lock
        other = redis_client.lock("lock:demo", timeout=5)
        assert other.acquire(blocking=False)

    assert redis_client.get("lock:demo") == other.token
    other.release()


def test_keep_ttl_preserves_expiry(cache, redis_client):
    cache.set("quiz_sessions:1:current_question", {"question_index": 0})
    assert cache.expire_pattern("quiz_sessions:1:*", 60) == 1

    cache.set("quiz_sessions:1:current_question", {"question_index": 1}, keep_ttl=True)
    assert 0 < redis_client.ttl("quiz_sessions:1:current_question") <= 60

    cache.set("quiz_sessions:1:current_question", {"question_index": 2})
    assert redis_client.ttl("quiz_sessions:1:current_question") == -1
