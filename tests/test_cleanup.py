"""Tests for logout cleanup."""
import asyncio

import pytest

from booktrack.cleanup import DEFAULT_CACHE_KEYS, SessionCleanup, prefix_rule
from booktrack.errors import StorageError
from booktrack.storage import MemoryStorage, SessionStore
from conftest import FailingStorage

SESSION_STATE = {
    "userToken": "tok-1",
    "userData": {"id": "u1"},
    "appSettings": {"theme": "dark"},
    "booksCache": [],
    "userProfileCache": {"username": "alice"},
    "temp_draft": {"title": "half"},
    "cache_covers": ["a.jpg"],
}


def make_cleanup(storage):
    return SessionCleanup(SessionStore(storage), storage)


def test_cleanup_removes_session_state():
    """Test that the token, named caches and transient keys are removed."""
    storage = MemoryStorage(dict(SESSION_STATE, onboarding_seen=True, my_cache_x=1))

    asyncio.run(make_cleanup(storage).perform_cleanup())

    # Only prefixes count, not substrings
    assert storage.items == {"onboarding_seen": True, "my_cache_x": 1}


def test_cleanup_twice_is_idempotent():
    """Test that a second cleanup succeeds and leaves nothing behind."""
    storage = MemoryStorage(dict(SESSION_STATE))
    cleanup = make_cleanup(storage)

    asyncio.run(cleanup.perform_cleanup())
    asyncio.run(cleanup.perform_cleanup())

    assert storage.items == {}
    assert not asyncio.run(cleanup.session_store.get()).is_authenticated


def test_transient_keys_in_isolation():
    """Test the sweep selection without touching storage."""
    cleanup = make_cleanup(MemoryStorage())

    keys = ["temp_1", "cache_2", "userToken", "tempo", "xcache_3"]

    assert cleanup.transient_keys(keys) == ["temp_1", "cache_2"]


def test_registered_rule_extends_sweep():
    """Test adding a transient-key rule."""
    storage = MemoryStorage({"draft_1": {}, "keep": 1})
    cleanup = make_cleanup(storage)
    cleanup.register_transient_rule(prefix_rule("draft_"))

    asyncio.run(cleanup.perform_cleanup())

    assert storage.items == {"keep": 1}


def test_custom_cache_keys():
    """Test overriding the named cache entries."""
    storage = MemoryStorage({"booksCache": [], "readingList": []})
    cleanup = SessionCleanup(SessionStore(storage), storage, cache_keys=["readingList"])

    asyncio.run(cleanup.perform_cleanup())

    assert storage.items == {"booksCache": []}
    assert "booksCache" in DEFAULT_CACHE_KEYS


def test_hooks_run_and_unregister():
    """Test in-memory cleanup hooks."""
    cleanup = make_cleanup(MemoryStorage())
    calls = []
    unregister = cleanup.register_hook(lambda: calls.append("hook"))

    asyncio.run(cleanup.perform_cleanup())
    unregister()
    unregister()
    asyncio.run(cleanup.perform_cleanup())

    assert calls == ["hook"]


@pytest.mark.parametrize("fail_on", ["remove_item", "get_all_keys"])
def test_storage_failure_is_reraised(fail_on):
    """Test that a failed cleanup is never reported as success."""
    storage = FailingStorage(dict(SESSION_STATE), fail_on=(fail_on,))
    cleanup = make_cleanup(storage)
    calls = []
    cleanup.register_hook(lambda: calls.append("hook"))

    with pytest.raises(StorageError):
        asyncio.run(cleanup.perform_cleanup())

    assert calls == []
