"""Boundaries of a single pipeline run."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable

from .db import Store
from .errors import ReferentialError
from .models import Article, FetchRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchHandle:
    """
    Token for one fetch.

    Articles and bullets are written through a handle so every row carries a
    fetch id that was issued by :meth:`FetchLifecycleManager.begin_fetch`.
    """

    fetch_id: int
    fetched_at: datetime
    store: Store = dataclasses.field(repr=False, compare=False)

    def add_article(self, article: Article) -> int:
        return self.store.add_article(self.fetch_id, article)

    def add_articles(self, articles: Iterable[Article]) -> list[int]:
        ids = self.store.add_articles(self.fetch_id, articles)
        logger.info("Stored %d articles for fetch %s", len(ids), self.fetch_id)
        return ids

    def add_bullets(self, texts: Iterable[str]) -> list[int]:
        ids = self.store.add_bullets(self.fetch_id, texts)
        logger.info("Stored %d pending bullets for fetch %s", len(ids), self.fetch_id)
        return ids


class FetchLifecycleManager:
    """Opens fetches and answers questions about the current one."""

    def __init__(self, store: Store):
        self.store = store

    def begin_fetch(self) -> FetchHandle:
        fetch_id = self.store.create_fetch()
        record = self.store.get_fetch(fetch_id)
        logger.info("Opened fetch %s", fetch_id)
        return FetchHandle(fetch_id=fetch_id, fetched_at=record.fetched_at, store=self.store)

    def latest_fetch(self) -> FetchRecord | None:
        fetch_id = self.store.latest_fetch_id()
        return self.store.get_fetch(fetch_id) if fetch_id is not None else None

    def handle_for(self, fetch_id: int) -> FetchHandle:
        """Re-open an existing fetch, e.g. to resume an interrupted run."""
        record = self.store.get_fetch(fetch_id)
        if record is None:
            raise ReferentialError(f"Fetch {fetch_id} does not exist.")
        return FetchHandle(fetch_id=record.id, fetched_at=record.fetched_at, store=self.store)

    def current_handle(self) -> FetchHandle | None:
        latest = self.latest_fetch()
        if latest is None:
            return None
        return FetchHandle(fetch_id=latest.id, fetched_at=latest.fetched_at, store=self.store)

    def prune(self, keep_days: int, *, now: datetime | None = None) -> list[int]:
        """Delete fetches older than `keep_days`; the latest fetch is always kept."""
        if keep_days < 0:
            raise ValueError("keep_days must be >= 0.")
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=keep_days)
        latest = self.store.latest_fetch_id()
        removed = []
        for fetch_id in self.store.fetches_older_than(cutoff):
            if fetch_id == latest:
                continue
            if self.store.delete_fetch(fetch_id):
                removed.append(fetch_id)
        if removed:
            logger.info("Pruned %d fetches older than %s", len(removed), cutoff.isoformat())
        return removed
