"""Data models for the digest pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, HttpUrl, TypeAdapter, field_validator

_HTTP_URL = TypeAdapter(HttpUrl)


class BulletState(str, Enum):
    """Filtering decision for a candidate bullet."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"

    @classmethod
    def from_column(cls, accepted: Optional[bool]) -> "BulletState":
        if accepted is None:
            return cls.PENDING
        return cls.ACCEPTED if accepted else cls.REJECTED

    def to_column(self) -> Optional[bool]:
        if self is BulletState.PENDING:
            return None
        return self is BulletState.ACCEPTED


class SummaryState(str, Enum):
    """Terminal state machine of a fetch."""

    NO_SUMMARY = "no-summary"
    DRAFTED = "summary-drafted"
    SENT = "summary-sent"


class Article(BaseModel):
    """One scraped news item as supplied by a source extractor."""

    url: str = Field(..., description="Article URL exactly as discovery reported it.")
    og_title: str
    source: str = Field(..., description="Identifier of the site the article came from.")
    text: str = Field(..., description="Full text of the article body.")
    published_time: Optional[str] = Field(
        None, description="Publication time exactly as the source reported it."
    )
    og_image: Optional[str] = None
    author: Optional[str] = None

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        # Validated but kept verbatim: known-URL checks compare raw strings.
        _HTTP_URL.validate_python(value)
        return value


class Extraction(BaseModel):
    """Mood sentence and candidate bullets produced from a fetch's articles."""

    mood: str
    items: List[str]


class Digest(BaseModel):
    """Finalized content handed to the delivery channels."""

    fetch_id: int
    generated_at: datetime
    mood_text: str
    bullets: List[str]


# --- Persisted rows, detached from the database session -------------------

@dataclass(frozen=True)
class FetchRecord:
    id: int
    fetched_at: datetime


@dataclass(frozen=True)
class ArticleRecord:
    id: int
    fetch_id: int
    url: str
    og_title: str
    published_time: str | None
    og_image: str | None
    author: str | None
    text: str
    source: str


@dataclass(frozen=True)
class BulletRecord:
    id: int
    fetch_id: int
    text: str
    state: BulletState


@dataclass(frozen=True)
class SummaryRecord:
    id: int
    fetch_id: int
    generated_at: datetime
    mood_text: str
    sent: bool


@dataclass(frozen=True)
class RejectedBullet:
    id: int
    text: str
    fetched_at: datetime


@dataclass(frozen=True)
class FetchStatus:
    fetch_id: int
    fetched_at: datetime
    articles: int
    pending: int
    accepted: int
    rejected: int
    summary_state: SummaryState
