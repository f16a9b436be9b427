"""Exception taxonomy for the digest pipeline."""

from __future__ import annotations


class DigestError(Exception):
    """Base class for every error raised by news_digest."""


class ConfigError(DigestError):
    """Settings are missing or inconsistent with the requested run."""


class StoreIntegrityError(DigestError):
    """A write would break one of the persisted invariants."""


class ReferentialError(StoreIntegrityError):
    """A write referenced a fetch, bullet or summary that does not exist."""


class UniquenessViolation(StoreIntegrityError):
    """A second summary was requested for a fetch that already has one."""


class AcceptanceConflict(StoreIntegrityError):
    """A decided bullet was asked to take the opposite decision."""


class DecisionMismatch(DigestError):
    """The filter returned a different number of decisions than candidates."""


class SummaryMissing(DigestError):
    """Delivery was requested for a fetch without a drafted summary."""


class ChannelError(DigestError):
    """A delivery channel could not hand the digest to every recipient."""
