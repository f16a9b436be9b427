"""Coordinator for one scheduled digest run.

Steps, each anchored to the fetch opened for the run:
- discover and scrape new articles (stored under the fetch)
- extract a mood line and candidate bullets (stored pending)
- filter candidates against the last published digest (accept/reject)
- draft the summary (skipped when nothing was accepted)
- deliver to every channel, then mark the summary sent

Collaborators are injected so tests and offline runs never touch the network.
A failure in any step propagates after leaving the fetch in the state it
reached; `resume_delivery` retries the last step for a drafted summary.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from .acceptance import BulletAcceptanceTracker, DecisionReport
from .channels import Channel
from .db import Store
from .errors import SummaryMissing
from .finalizer import (
    DeliveryReport,
    DraftOutcome,
    NothingToSummarize,
    SummaryFinalizer,
)
from .lifecycle import FetchLifecycleManager
from .models import ArticleRecord, Extraction, SummaryState
from .sources import Scraper

logger = logging.getLogger(__name__)

ExtractFn = Callable[[Sequence[ArticleRecord]], Extraction]
FilterFn = Callable[[Sequence[str], Sequence[str]], list[bool]]
MoodFn = Callable[[Sequence[str], Sequence[ArticleRecord], Extraction], str]


@dataclass
class RunResult:
    fetch_id: int | None = None
    articles_stored: int = 0
    scrape_failures: dict[str, str] | None = None
    candidates: int = 0
    decisions: DecisionReport | None = None
    draft: DraftOutcome | None = None
    delivery: DeliveryReport | None = None
    ai_skipped: bool = False

    @property
    def completed(self) -> bool:
        """True when the run ended in a terminal state with nothing left to retry."""
        if self.fetch_id is None or self.ai_skipped:
            return True
        if isinstance(self.draft, NothingToSummarize):
            return True
        return self.delivery is not None and self.delivery.sent


def merge_candidates(fresh: Sequence[str], carryover: Sequence[str]) -> list[str]:
    """Fresh bullets first, then carried-over ones whose text is not already present."""
    merged = list(dict.fromkeys(fresh))
    seen = set(merged)
    for text in carryover:
        if text not in seen:
            seen.add(text)
            merged.append(text)
    return merged


def _mood_from_extraction(
    _accepted: Sequence[str], _articles: Sequence[ArticleRecord], extraction: Extraction
) -> str:
    return extraction.mood


def run_pipeline(
    store: Store,
    *,
    scraper: Scraper,
    extract_fn: Optional[ExtractFn] = None,
    filter_fn: Optional[FilterFn] = None,
    mood_fn: Optional[MoodFn] = None,
    channels: Sequence[Channel] = (),
    skip_ai: bool = False,
) -> RunResult:
    """
    Run discovery through delivery once.

    With `skip_ai` the run stops after storing articles. Raises on any
    collaborator failure; the fetch keeps whatever it reached.
    """
    if not skip_ai and (extract_fn is None or filter_fn is None):
        raise ValueError("extract_fn and filter_fn are required unless skip_ai is set.")
    mood_fn = mood_fn or _mood_from_extraction
    lifecycle = FetchLifecycleManager(store)
    tracker = BulletAcceptanceTracker(store)
    finalizer = SummaryFinalizer(store, tracker)
    result = RunResult()

    new_urls = scraper.discover(store.known_article_urls())
    if not new_urls:
        logger.info("No new articles found. Everything is up to date.")
        return result
    logger.info("Found %d new articles, starting scrape", len(new_urls))

    handle = lifecycle.begin_fetch()
    result.fetch_id = handle.fetch_id
    scraped = scraper.fetch(new_urls)
    result.scrape_failures = dict(scraped.failures)
    result.articles_stored = len(handle.add_articles(scraped.articles))

    if skip_ai:
        result.ai_skipped = True
        logger.info("AI steps skipped; fetch %s holds articles only", handle.fetch_id)
        return result

    articles = store.articles_for_fetch(handle.fetch_id)
    if not articles:
        logger.warning("Fetch %s has no articles to summarize", handle.fetch_id)
        result.draft = NothingToSummarize(fetch_id=handle.fetch_id)
        return result

    extraction = extract_fn(articles)
    published = store.published_bullets()
    carryover = store.carryover_bullets()
    candidates = merge_candidates(extraction.items, carryover)
    logger.info(
        "%d candidates (%d carried over), %d published bullets to compare against",
        len(candidates),
        len(candidates) - len(dict.fromkeys(extraction.items)),
        len(published),
    )
    handle.add_bullets(candidates)
    result.candidates = len(candidates)

    pending = tracker.pending_bullets(handle.fetch_id)
    decisions = filter_fn(published, [bullet.text for bullet in pending])
    result.decisions = tracker.apply_ordered(handle.fetch_id, pending, decisions)
    logger.info(
        "Filter accepted %d and rejected %d bullets; see the rejected view for details",
        sum(1 for d in decisions if d),
        sum(1 for d in decisions if not d),
    )

    result.draft = finalizer.draft_with(
        handle.fetch_id, lambda accepted: mood_fn(accepted, articles, extraction)
    )
    if isinstance(result.draft, NothingToSummarize):
        return result

    result.delivery = finalizer.deliver(handle.fetch_id, channels)
    return result


def resume_delivery(
    store: Store, channels: Sequence[Channel], *, fetch_id: int | None = None
) -> DeliveryReport:
    """
    Retry delivery for a drafted summary, by default the latest fetch's.

    Raises ReferentialError for an unknown `fetch_id` and SummaryMissing
    when the fetch never got a summary.
    """
    lifecycle = FetchLifecycleManager(store)
    finalizer = SummaryFinalizer(store)
    handle = (
        lifecycle.handle_for(fetch_id) if fetch_id is not None else lifecycle.current_handle()
    )
    if handle is None:
        raise SummaryMissing("There is no fetch to deliver.")
    state = finalizer.state(handle.fetch_id)
    if state is SummaryState.NO_SUMMARY:
        raise SummaryMissing(f"Fetch {handle.fetch_id} has no drafted summary.")
    logger.info("Resuming delivery for fetch %s (%s)", handle.fetch_id, state.value)
    return finalizer.deliver(handle.fetch_id, channels)
