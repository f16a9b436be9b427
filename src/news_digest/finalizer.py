"""Summary drafting and exactly-once delivery for a fetch.

A fetch moves through ``no-summary -> summary-drafted -> summary-sent``. The
summary row (with its mood text) is written before any channel is called, and
``sent`` only flips once every channel accepted the digest in the same
attempt.

Known limitation: a retry after partial failure sends the digest again to the
channels that had already succeeded. Delivery is at-least-once per channel
until one attempt succeeds everywhere; nothing is rolled back.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Sequence, Union

from .acceptance import BulletAcceptanceTracker
from .channels import Channel
from .db import Store
from .errors import ReferentialError, SummaryMissing, UniquenessViolation
from .models import Digest, SummaryState

logger = logging.getLogger(__name__)

MoodFn = Callable[[list[str]], str]


@dataclass(frozen=True)
class NothingToSummarize:
    """Filtering accepted no bullet, so no summary was drafted."""

    fetch_id: int
    pending: int = 0
    rejected: int = 0


@dataclass(frozen=True)
class SummaryDrafted:
    fetch_id: int
    summary_id: int
    mood_text: str


DraftOutcome = Union[SummaryDrafted, NothingToSummarize]


@dataclass(frozen=True)
class ChannelResult:
    channel: str
    ok: bool
    error: str | None = None


@dataclass
class DeliveryReport:
    fetch_id: int
    summary_id: int
    results: list[ChannelResult] = field(default_factory=list)
    sent: bool = False
    already_sent: bool = False

    @property
    def failures(self) -> list[ChannelResult]:
        return [result for result in self.results if not result.ok]


class SummaryFinalizer:
    def __init__(self, store: Store, tracker: BulletAcceptanceTracker | None = None):
        self.store = store
        self.tracker = tracker or BulletAcceptanceTracker(store)

    def state(self, fetch_id: int) -> SummaryState:
        summary = self.store.summary_for_fetch(fetch_id)
        if summary is None:
            return SummaryState.NO_SUMMARY
        return SummaryState.SENT if summary.sent else SummaryState.DRAFTED

    def draft(self, fetch_id: int, mood_text: str) -> DraftOutcome:
        return self.draft_with(fetch_id, lambda _accepted: mood_text)

    def draft_with(self, fetch_id: int, mood_fn: MoodFn) -> DraftOutcome:
        """
        Persist the summary for `fetch_id` using the mood text from `mood_fn`.

        `mood_fn` receives the accepted bullet texts and is only called when
        there is something to summarize and no summary exists yet. Raises
        ReferentialError when the fetch does not exist.
        """
        if self.store.get_fetch(fetch_id) is None:
            raise ReferentialError(f"Fetch {fetch_id} does not exist.")
        accepted = [bullet.text for bullet in self.tracker.accepted_bullets(fetch_id)]
        if not accepted:
            status = self.store.fetch_status(fetch_id)
            logger.info("Fetch %s has no accepted bullets; nothing to summarize", fetch_id)
            return NothingToSummarize(
                fetch_id=fetch_id,
                pending=status.pending if status else 0,
                rejected=status.rejected if status else 0,
            )
        existing = self.store.summary_for_fetch(fetch_id)
        if existing is not None:
            raise UniquenessViolation(
                f"Fetch {fetch_id} already has summary {existing.id}."
            )
        mood_text = mood_fn(accepted)
        summary_id = self.store.create_summary(fetch_id, mood_text)
        logger.info("Drafted summary %s for fetch %s", summary_id, fetch_id)
        return SummaryDrafted(fetch_id=fetch_id, summary_id=summary_id, mood_text=mood_text)

    def digest_for(self, fetch_id: int) -> Digest:
        summary = self.store.summary_for_fetch(fetch_id)
        if summary is None:
            raise SummaryMissing(f"Fetch {fetch_id} has no drafted summary.")
        return Digest(
            fetch_id=fetch_id,
            generated_at=summary.generated_at,
            mood_text=summary.mood_text,
            bullets=[bullet.text for bullet in self.tracker.accepted_bullets(fetch_id)],
        )

    def deliver(
        self,
        fetch_id: int,
        channels: Sequence[Channel],
        *,
        max_workers: int = 4,
    ) -> DeliveryReport:
        """
        Send the drafted summary to every channel and mark it sent on full success.

        Safe to call again after a failed attempt: the summary row is reused,
        and a summary that is already sent is not delivered twice.
        """
        summary = self.store.summary_for_fetch(fetch_id)
        if summary is None:
            raise SummaryMissing(f"Fetch {fetch_id} has no drafted summary.")
        if summary.sent:
            logger.info("Summary %s for fetch %s was already sent", summary.id, fetch_id)
            return DeliveryReport(
                fetch_id=fetch_id, summary_id=summary.id, sent=True, already_sent=True
            )

        digest = self.digest_for(fetch_id)
        results = self._send_all(digest, channels, max_workers=max_workers)
        report = DeliveryReport(fetch_id=fetch_id, summary_id=summary.id, results=results)
        if report.failures:
            logger.warning(
                "Summary %s not marked sent; failed channels: %s",
                summary.id,
                ", ".join(result.channel for result in report.failures),
            )
            return report

        self.store.mark_summary_sent(summary.id)
        report.sent = True
        logger.info("Summary %s for fetch %s sent", summary.id, fetch_id)
        return report

    @staticmethod
    def _send_all(
        digest: Digest, channels: Sequence[Channel], *, max_workers: int
    ) -> list[ChannelResult]:
        if not channels:
            return []
        outcomes: list[ChannelResult | None] = [None] * len(channels)
        worker_count = max(1, min(max_workers, len(channels)))
        with ThreadPoolExecutor(max_workers=worker_count) as executor:
            future_map = {
                executor.submit(channel.send, digest): idx
                for idx, channel in enumerate(channels)
            }
            for future in as_completed(future_map):
                idx = future_map[future]
                name = channels[idx].name
                try:
                    future.result()
                    outcomes[idx] = ChannelResult(channel=name, ok=True)
                except Exception as exc:
                    logger.error("Delivery via %s failed: %s", name, exc)
                    outcomes[idx] = ChannelResult(channel=name, ok=False, error=str(exc))
        return [outcome for outcome in outcomes if outcome is not None]
