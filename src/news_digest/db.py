"""Relational state for fetches, articles, bullets and summaries.

Every public method of :class:`Store` is one short transaction. Integrity
checks (fetch existence, one summary per fetch, write-once acceptance) run in
the same transaction as the write they guard, and SQLAlchemy integrity errors
are translated into the exceptions of :mod:`news_digest.errors`.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Iterator, Optional, Sequence

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    event,
    false,
    func,
    select,
    text,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    Session,
    mapped_column,
    relationship,
    sessionmaker,
)
from sqlalchemy.pool import StaticPool

from .errors import AcceptanceConflict, ReferentialError, UniquenessViolation
from .models import (
    Article,
    ArticleRecord,
    BulletRecord,
    BulletState,
    FetchRecord,
    FetchStatus,
    RejectedBullet,
    SummaryRecord,
    SummaryState,
)

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Fetch(Base):
    __tablename__ = "fetches"
    # AUTOINCREMENT keeps ids monotonic after pruning, so max(id) stays "latest".
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    articles: Mapped[list["ArticleRow"]] = relationship(
        back_populates="fetch", cascade="all, delete-orphan"
    )
    bullets: Mapped[list["Bullet"]] = relationship(
        back_populates="fetch", cascade="all, delete-orphan"
    )
    summary: Mapped[Optional["Summary"]] = relationship(
        back_populates="fetch", cascade="all, delete-orphan", uselist=False
    )


class ArticleRow(Base):
    __tablename__ = "articles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    fetch_id: Mapped[int] = mapped_column(
        ForeignKey("fetches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)
    og_title: Mapped[str] = mapped_column(Text, nullable=False)
    published_time: Mapped[Optional[str]] = mapped_column(String(64))
    og_image: Mapped[Optional[str]] = mapped_column(Text)
    author: Mapped[Optional[str]] = mapped_column(String(255))
    text: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str] = mapped_column(String(100), nullable=False)

    fetch: Mapped[Fetch] = relationship(back_populates="articles")


class Summary(Base):
    __tablename__ = "summaries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    fetch_id: Mapped[int] = mapped_column(
        ForeignKey("fetches.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    mood_text: Mapped[str] = mapped_column(Text, nullable=False)
    sent: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )

    fetch: Mapped[Fetch] = relationship(back_populates="summary")


class Bullet(Base):
    __tablename__ = "bullets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    fetch_id: Mapped[int] = mapped_column(
        ForeignKey("fetches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    # NULL = not yet filtered, TRUE/FALSE = filter decision.
    accepted: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True, default=None)

    fetch: Mapped[Fetch] = relationship(back_populates="bullets")


def _latest_fetch_id_query():
    return select(func.max(Fetch.id))


def _view_ddl(dialect: str) -> str:
    create = "CREATE VIEW IF NOT EXISTS" if dialect == "sqlite" else "CREATE OR REPLACE VIEW"
    return (
        f"{create} latest_rejected_bullets AS "
        "SELECT b.id, b.text, f.fetched_at "
        "FROM bullets b JOIN fetches f ON b.fetch_id = f.id "
        "WHERE f.id = (SELECT MAX(id) FROM fetches) AND NOT b.accepted"
    )


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.close()


def build_engine(database_url: str) -> Engine:
    """Create an engine; SQLite connections get foreign key enforcement."""
    if database_url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if database_url in {"sqlite://", "sqlite:///:memory:"}:
            # One shared connection, otherwise each session sees an empty database.
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, **kwargs)
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine
    return create_engine(database_url)


def _to_article(row: ArticleRow) -> ArticleRecord:
    return ArticleRecord(
        id=row.id,
        fetch_id=row.fetch_id,
        url=row.url,
        og_title=row.og_title,
        published_time=row.published_time,
        og_image=row.og_image,
        author=row.author,
        text=row.text,
        source=row.source,
    )


def _to_bullet(row: Bullet) -> BulletRecord:
    return BulletRecord(
        id=row.id,
        fetch_id=row.fetch_id,
        text=row.text,
        state=BulletState.from_column(row.accepted),
    )


def _to_summary(row: Summary) -> SummaryRecord:
    return SummaryRecord(
        id=row.id,
        fetch_id=row.fetch_id,
        generated_at=row.generated_at,
        mood_text=row.mood_text,
        sent=row.sent,
    )


class Store:
    """Transactional access to the persisted pipeline state."""

    def __init__(self, database_url: str | None = None, *, engine: Engine | None = None):
        if engine is None:
            if database_url is None:
                raise ValueError("Provide a database_url or an engine.")
            engine = build_engine(database_url)
        self.engine = engine
        self._sessions = sessionmaker(engine, expire_on_commit=False)

    @classmethod
    def open(cls, database_url: str) -> "Store":
        """Open the database and make sure the schema exists."""
        store = cls(database_url)
        store.init_schema()
        return store

    def init_schema(self) -> None:
        Base.metadata.create_all(self.engine)
        with self.engine.begin() as conn:
            conn.execute(text(_view_ddl(self.engine.dialect.name)))
        logger.debug("Schema ready on %s", self.engine.url.render_as_string(hide_password=True))

    def close(self) -> None:
        self.engine.dispose()

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        with self._sessions.begin() as session:
            yield session

    @staticmethod
    def _require_fetch(session: Session, fetch_id: int) -> Fetch:
        fetch = session.get(Fetch, fetch_id)
        if fetch is None:
            raise ReferentialError(f"Fetch {fetch_id} does not exist.")
        return fetch

    # --- Writes -----------------------------------------------------------

    def create_fetch(self) -> int:
        with self._transaction() as session:
            fetch = Fetch()
            session.add(fetch)
            session.flush()
            logger.debug("Created fetch %s", fetch.id)
            return fetch.id

    def add_article(self, fetch_id: int, fields: Article) -> int:
        return self.add_articles(fetch_id, [fields])[0]

    def add_articles(self, fetch_id: int, articles: Iterable[Article]) -> list[int]:
        with self._transaction() as session:
            self._require_fetch(session, fetch_id)
            rows = [
                ArticleRow(
                    fetch_id=fetch_id,
                    url=article.url,
                    og_title=article.og_title,
                    published_time=article.published_time,
                    og_image=article.og_image,
                    author=article.author,
                    text=article.text,
                    source=article.source,
                )
                for article in articles
            ]
            session.add_all(rows)
            try:
                session.flush()
            except IntegrityError as exc:
                raise ReferentialError(f"Fetch {fetch_id} does not exist.") from exc
            return [row.id for row in rows]

    def add_bullet(self, fetch_id: int, text: str) -> int:
        return self.add_bullets(fetch_id, [text])[0]

    def add_bullets(self, fetch_id: int, texts: Iterable[str]) -> list[int]:
        """Insert candidate bullets in the pending state, preserving order."""
        with self._transaction() as session:
            self._require_fetch(session, fetch_id)
            rows = [Bullet(fetch_id=fetch_id, text=value, accepted=None) for value in texts]
            session.add_all(rows)
            try:
                session.flush()
            except IntegrityError as exc:
                raise ReferentialError(f"Fetch {fetch_id} does not exist.") from exc
            return [row.id for row in rows]

    @staticmethod
    def _decide(bullet: Bullet, accepted: bool) -> bool:
        if bullet.accepted is None:
            bullet.accepted = accepted
            return True
        if bullet.accepted == accepted:
            return False
        raise AcceptanceConflict(
            f"Bullet {bullet.id} is already "
            f"{BulletState.from_column(bullet.accepted).value}; refusing to change it."
        )

    def set_bullet_acceptance(self, bullet_id: int, accepted: bool) -> bool:
        """
        Record the filter decision for one bullet.

        Returns True when the row changed and False when it already held the
        same decision. There is no way back to pending.
        """
        if not isinstance(accepted, bool):
            raise TypeError("accepted must be True or False; bullets cannot return to pending.")
        with self._transaction() as session:
            bullet = session.get(Bullet, bullet_id)
            if bullet is None:
                raise ReferentialError(f"Bullet {bullet_id} does not exist.")
            return self._decide(bullet, accepted)

    def set_bullet_acceptances(
        self, fetch_id: int, decisions: Sequence[tuple[int, bool]]
    ) -> tuple[list[int], list[int]]:
        """
        Apply several decisions for one fetch atomically.

        Returns (changed_ids, unchanged_ids). Any conflict or foreign bullet
        aborts the whole batch.
        """
        for _, accepted in decisions:
            if not isinstance(accepted, bool):
                raise TypeError(
                    "accepted must be True or False; bullets cannot return to pending."
                )
        changed: list[int] = []
        unchanged: list[int] = []
        with self._transaction() as session:
            self._require_fetch(session, fetch_id)
            for bullet_id, accepted in decisions:
                bullet = session.get(Bullet, bullet_id)
                if bullet is None or bullet.fetch_id != fetch_id:
                    raise ReferentialError(
                        f"Bullet {bullet_id} does not belong to fetch {fetch_id}."
                    )
                if self._decide(bullet, accepted):
                    changed.append(bullet_id)
                else:
                    unchanged.append(bullet_id)
        return changed, unchanged

    def create_summary(self, fetch_id: int, mood_text: str) -> int:
        with self._transaction() as session:
            self._require_fetch(session, fetch_id)
            existing = session.scalar(select(Summary.id).where(Summary.fetch_id == fetch_id))
            if existing is not None:
                raise UniquenessViolation(
                    f"Fetch {fetch_id} already has summary {existing}."
                )
            summary = Summary(fetch_id=fetch_id, mood_text=mood_text, sent=False)
            session.add(summary)
            try:
                session.flush()
            except IntegrityError as exc:
                raise UniquenessViolation(
                    f"Fetch {fetch_id} already has a summary."
                ) from exc
            logger.debug("Created summary %s for fetch %s", summary.id, fetch_id)
            return summary.id

    def mark_summary_sent(self, summary_id: int) -> bool:
        """Flip `sent` to true; returns False when it already was."""
        with self._transaction() as session:
            result = session.execute(
                update(Summary)
                .where(Summary.id == summary_id, Summary.sent.is_(False))
                .values(sent=True)
            )
            if result.rowcount:
                return True
            if session.get(Summary, summary_id) is None:
                raise ReferentialError(f"Summary {summary_id} does not exist.")
            return False

    def delete_fetch(self, fetch_id: int) -> bool:
        """Delete a fetch with its articles, bullets and summary."""
        with self._transaction() as session:
            fetch = session.get(Fetch, fetch_id)
            if fetch is None:
                return False
            session.delete(fetch)
            return True

    # --- Reads ------------------------------------------------------------

    def latest_fetch_id(self) -> int | None:
        """The fetch with the highest id; the one definition of "latest"."""
        with self._transaction() as session:
            return session.scalar(_latest_fetch_id_query())

    def get_fetch(self, fetch_id: int) -> FetchRecord | None:
        with self._transaction() as session:
            fetch = session.get(Fetch, fetch_id)
            if fetch is None:
                return None
            return FetchRecord(id=fetch.id, fetched_at=fetch.fetched_at)

    def fetches_older_than(self, cutoff: datetime) -> list[int]:
        with self._transaction() as session:
            return list(
                session.scalars(
                    select(Fetch.id).where(Fetch.fetched_at < cutoff).order_by(Fetch.id)
                )
            )

    def articles_for_fetch(self, fetch_id: int) -> list[ArticleRecord]:
        with self._transaction() as session:
            rows = session.scalars(
                select(ArticleRow).where(ArticleRow.fetch_id == fetch_id).order_by(ArticleRow.id)
            )
            return [_to_article(row) for row in rows]

    def known_article_urls(self) -> set[str]:
        with self._transaction() as session:
            return set(session.scalars(select(ArticleRow.url)))

    def bullets_for_fetch(
        self, fetch_id: int, state: BulletState | None = None
    ) -> list[BulletRecord]:
        stmt = select(Bullet).where(Bullet.fetch_id == fetch_id)
        if state is BulletState.PENDING:
            stmt = stmt.where(Bullet.accepted.is_(None))
        elif state is not None:
            stmt = stmt.where(Bullet.accepted.is_(state.to_column()))
        with self._transaction() as session:
            return [_to_bullet(row) for row in session.scalars(stmt.order_by(Bullet.id))]

    def summary_for_fetch(self, fetch_id: int) -> SummaryRecord | None:
        with self._transaction() as session:
            row = session.scalar(select(Summary).where(Summary.fetch_id == fetch_id))
            return _to_summary(row) if row is not None else None

    def latest_rejected_bullets(self) -> list[RejectedBullet]:
        """Rejected bullets of the latest fetch with that fetch's timestamp."""
        stmt = (
            select(Bullet.id, Bullet.text, Fetch.fetched_at)
            .join(Fetch, Bullet.fetch_id == Fetch.id)
            .where(
                Fetch.id == _latest_fetch_id_query().scalar_subquery(),
                Bullet.accepted.is_(False),
            )
            .order_by(Bullet.id)
        )
        with self._transaction() as session:
            return [
                RejectedBullet(id=row.id, text=row.text, fetched_at=row.fetched_at)
                for row in session.execute(stmt)
            ]

    def latest_sent_fetch_id(self) -> int | None:
        with self._transaction() as session:
            return session.scalar(
                select(Summary.fetch_id)
                .where(Summary.sent.is_(True))
                .order_by(Summary.id.desc())
                .limit(1)
            )

    def published_bullets(self) -> list[str]:
        """Accepted bullet texts of the most recently sent summary."""
        fetch_id = self.latest_sent_fetch_id()
        if fetch_id is None:
            return []
        return [b.text for b in self.bullets_for_fetch(fetch_id, BulletState.ACCEPTED)]

    def carryover_bullets(self) -> list[str]:
        """
        Accepted bullet texts of unsent summaries drafted after the last sent one.

        Newest summaries first, bullets in insertion order; duplicate texts are
        returned once.
        """
        last_sent = (
            select(func.coalesce(func.max(Summary.id), 0))
            .where(Summary.sent.is_(True))
            .scalar_subquery()
        )
        stmt = (
            select(Bullet.text)
            .join(Summary, Summary.fetch_id == Bullet.fetch_id)
            .where(
                Summary.sent.is_(False),
                Summary.id > last_sent,
                Bullet.accepted.is_(True),
            )
            .order_by(Summary.id.desc(), Bullet.id)
        )
        with self._transaction() as session:
            texts = list(session.scalars(stmt))
        return list(dict.fromkeys(texts))

    def fetch_status(self, fetch_id: int) -> FetchStatus | None:
        with self._transaction() as session:
            fetch = session.get(Fetch, fetch_id)
            if fetch is None:
                return None
            article_count = session.scalar(
                select(func.count(ArticleRow.id)).where(ArticleRow.fetch_id == fetch_id)
            )
            counts = {BulletState.PENDING: 0, BulletState.ACCEPTED: 0, BulletState.REJECTED: 0}
            for accepted, count in session.execute(
                select(Bullet.accepted, func.count(Bullet.id))
                .where(Bullet.fetch_id == fetch_id)
                .group_by(Bullet.accepted)
            ):
                counts[BulletState.from_column(accepted)] = count
            summary = fetch.summary
            if summary is None:
                state = SummaryState.NO_SUMMARY
            elif summary.sent:
                state = SummaryState.SENT
            else:
                state = SummaryState.DRAFTED
            return FetchStatus(
                fetch_id=fetch.id,
                fetched_at=fetch.fetched_at,
                articles=article_count or 0,
                pending=counts[BulletState.PENDING],
                accepted=counts[BulletState.ACCEPTED],
                rejected=counts[BulletState.REJECTED],
                summary_state=state,
            )
