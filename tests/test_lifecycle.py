from datetime import datetime, timedelta, timezone

import pytest

from news_digest.errors import ReferentialError
from news_digest.lifecycle import FetchLifecycleManager

from helpers import make_article


def test_begin_fetch_anchors_writes_to_the_new_fetch(store):
    manager = FetchLifecycleManager(store)
    handle = manager.begin_fetch()

    handle.add_articles([make_article("a"), make_article("b")])
    handle.add_bullets(["first", "second"])

    assert manager.latest_fetch().id == handle.fetch_id
    assert len(store.articles_for_fetch(handle.fetch_id)) == 2
    assert [b.text for b in store.bullets_for_fetch(handle.fetch_id)] == ["first", "second"]


def test_handles_compare_by_fetch_not_store(store):
    manager = FetchLifecycleManager(store)
    handle = manager.begin_fetch()
    assert manager.current_handle() == handle
    assert manager.handle_for(handle.fetch_id) == handle
    assert "store" not in repr(handle)


def test_handle_for_unknown_fetch_raises(store):
    with pytest.raises(ReferentialError):
        FetchLifecycleManager(store).handle_for(12)


def test_empty_store_has_no_current_fetch(store):
    manager = FetchLifecycleManager(store)
    assert manager.latest_fetch() is None
    assert manager.current_handle() is None


def test_prune_removes_old_fetches_but_keeps_latest(store):
    manager = FetchLifecycleManager(store)
    old = manager.begin_fetch()
    old.add_article(make_article("old"))
    middle = manager.begin_fetch()
    latest = manager.begin_fetch()

    later = datetime.now(timezone.utc) + timedelta(days=10)
    removed = manager.prune(3, now=later)

    assert removed == [old.fetch_id, middle.fetch_id]
    assert store.get_fetch(latest.fetch_id) is not None
    assert store.known_article_urls() == set()


def test_prune_keeps_recent_fetches(store):
    manager = FetchLifecycleManager(store)
    manager.begin_fetch()
    manager.begin_fetch()
    assert manager.prune(30) == []


def test_prune_rejects_negative_days(store):
    with pytest.raises(ValueError):
        FetchLifecycleManager(store).prune(-1)
