"""Tri-state acceptance of candidate bullets."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from .db import Store
from .errors import DecisionMismatch
from .models import BulletRecord, BulletState, RejectedBullet

logger = logging.getLogger(__name__)


@dataclass
class DecisionReport:
    fetch_id: int
    applied: list[int] = field(default_factory=list)
    unchanged: list[int] = field(default_factory=list)
    pending: list[BulletRecord] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        """True when no bullet of the fetch is left undecided."""
        return not self.pending


class BulletAcceptanceTracker:
    """Applies filter decisions to the pending bullets of a fetch."""

    def __init__(self, store: Store):
        self.store = store

    def apply_decisions(
        self, fetch_id: int, decisions: Iterable[tuple[int, bool]]
    ) -> DecisionReport:
        """
        Apply (bullet_id, accepted) pairs for one fetch.

        Bullets the decisions do not mention stay pending and are listed in
        the report; they are never treated as rejected.
        """
        changed, unchanged = self.store.set_bullet_acceptances(fetch_id, list(decisions))
        pending = self.pending_bullets(fetch_id)
        report = DecisionReport(
            fetch_id=fetch_id, applied=changed, unchanged=unchanged, pending=pending
        )
        if pending:
            logger.warning(
                "Fetch %s still has %d undecided bullets", fetch_id, len(pending)
            )
        return report

    def apply_ordered(
        self, fetch_id: int, bullets: Sequence[BulletRecord], results: Sequence[bool]
    ) -> DecisionReport:
        """Map a positional list of decisions onto `bullets`."""
        if len(results) != len(bullets):
            raise DecisionMismatch(
                f"Filter returned {len(results)} decisions, expected {len(bullets)}."
            )
        return self.apply_decisions(
            fetch_id, [(bullet.id, bool(result)) for bullet, result in zip(bullets, results)]
        )

    def pending_bullets(self, fetch_id: int) -> list[BulletRecord]:
        return self.store.bullets_for_fetch(fetch_id, BulletState.PENDING)

    def accepted_bullets(self, fetch_id: int) -> list[BulletRecord]:
        return self.store.bullets_for_fetch(fetch_id, BulletState.ACCEPTED)

    def latest_rejected(self) -> list[RejectedBullet]:
        return self.store.latest_rejected_bullets()
