"""SQLAlchemy record store for papers, refresh logs and facet tables."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    Engine,
    Integer,
    String,
    Text,
    bindparam,
    create_engine,
    delete,
    func,
    or_,
    select,
    text,
    update,
)
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.types import TypeDecorator

from errors import StorageConflict
from models import FacetCount, PaperUpdate, ProcessedPaper, RunStatus

DEFAULT_DATABASE_URL = "sqlite:///biorxiv_digest.db"

LOGGER = logging.getLogger(__name__)


def database_url() -> str:
    return os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)


def utcnow() -> datetime:
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Stores aware datetimes as naive UTC and hands them back as aware UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(UTC).replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        return value.replace(tzinfo=UTC)


class Base(DeclarativeBase):
    pass


class PaperRow(Base):
    __tablename__ = "papers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    doi: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    authors: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    abstract: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Present iff the record is fully processed.
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    model_organism: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    keywords: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    methods: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    markdown: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class RefreshLog(Base):
    __tablename__ = "refresh_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, index=True)
    interval_start: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    interval_end: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    papers_fetched: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    papers_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")


class KeywordFacet(Base):
    __tablename__ = "keyword_facets"

    keyword: Mapped[str] = mapped_column(String(255), primary_key=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_updated: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class OrganismFacet(Base):
    __tablename__ = "organism_facets"

    organism: Mapped[str] = mapped_column(String(255), primary_key=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_updated: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class PaperStore:
    """The record-store interface consumed by the pipeline and the read paths."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._sessions = sessionmaker(engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, url: str | None = None) -> PaperStore:
        store = cls(create_engine(url or database_url()))
        store.create_schema()
        return store

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)

    # Papers

    def existing_dois(self, dois: Iterable[str]) -> set[str]:
        """Return the subset of `dois` already stored, in one query."""
        return set(self.existing_summaries(dois))

    def existing_summaries(self, dois: Iterable[str]) -> dict[str, str | None]:
        dois = list(dict.fromkeys(dois))
        if not dois:
            return {}
        with self._sessions() as session:
            rows = session.execute(
                select(PaperRow.doi, PaperRow.summary).where(PaperRow.doi.in_(dois))
            ).all()
        return {doi: summary for doi, summary in rows}

    def insert_paper(self, paper: ProcessedPaper) -> None:
        self.insert_papers([paper])

    def insert_papers(self, papers: Sequence[ProcessedPaper]) -> None:
        """Insert all papers in one transaction, or none of them.

        Raises StorageConflict if any DOI is already stored. Existing rows
        are never overwritten.
        """
        if not papers:
            return
        now = utcnow()
        try:
            with self._sessions.begin() as session:
                session.add_all([_paper_row(paper, now) for paper in papers])
        except IntegrityError as exc:
            if _is_unique_violation(exc):
                raise StorageConflict(
                    f"DOI already stored (batch of {len(papers)})",
                    details=[paper.doi for paper in papers],
                ) from exc
            raise

    def get_paper(self, doi: str) -> PaperRow | None:
        with self._sessions() as session:
            return session.scalars(select(PaperRow).where(PaperRow.doi == doi)).first()

    def count_papers(self, start: datetime | None = None, end: datetime | None = None) -> int:
        stmt = select(func.count()).select_from(PaperRow)
        if start is not None:
            stmt = stmt.where(PaperRow.date >= start)
        if end is not None:
            stmt = stmt.where(PaperRow.date < end)
        with self._sessions() as session:
            return int(session.scalar(stmt) or 0)

    def recent_papers(self, limit: int, since: datetime | None = None) -> list[PaperRow]:
        stmt = select(PaperRow).order_by(PaperRow.date.desc(), PaperRow.id.desc()).limit(limit)
        if since is not None:
            stmt = stmt.where(PaperRow.date >= since)
        with self._sessions() as session:
            return list(session.scalars(stmt))

    def papers_needing_backfill(self, updated_before: datetime, limit: int) -> list[PaperRow]:
        """Records missing a summary or methods, untouched since `updated_before`."""
        stmt = (
            select(PaperRow)
            .where(
                or_(
                    PaperRow.summary.is_(None),
                    PaperRow.summary == "",
                    func.coalesce(func.json_array_length(PaperRow.methods), 0) == 0,
                ),
                PaperRow.updated_at < updated_before,
            )
            .order_by(PaperRow.updated_at.asc())
            .limit(limit)
        )
        with self._sessions() as session:
            return list(session.scalars(stmt))

    def update_papers(self, updates: Sequence[PaperUpdate]) -> int:
        """Rewrite enrichment fields for existing records in one transaction."""
        if not updates:
            return 0
        now = utcnow()
        updated = 0
        with self._sessions.begin() as session:
            for item in updates:
                result = session.execute(
                    update(PaperRow)
                    .where(PaperRow.doi == item.doi)
                    .values(
                        summary=item.summary,
                        keywords=list(item.keywords),
                        methods=list(item.methods),
                        model_organism=item.model_organism,
                        markdown=item.markdown,
                        updated_at=now,
                    )
                )
                updated += result.rowcount
        return updated

    # Refresh logs

    def latest_refresh_log(self) -> RefreshLog | None:
        stmt = select(RefreshLog).order_by(RefreshLog.date.desc(), RefreshLog.id.desc()).limit(1)
        with self._sessions() as session:
            return session.scalars(stmt).first()

    def get_refresh_log(self, run_id: int) -> RefreshLog | None:
        with self._sessions() as session:
            return session.get(RefreshLog, run_id)

    def create_refresh_log(
        self,
        interval_start: datetime,
        interval_end: datetime,
        started_at: datetime | None = None,
    ) -> int:
        with self._sessions.begin() as session:
            log = RefreshLog(
                date=started_at or utcnow(),
                interval_start=interval_start,
                interval_end=interval_end,
                papers_fetched=0,
                papers_processed=0,
                status=RunStatus.IN_PROGRESS.value,
            )
            session.add(log)
            session.flush()
            return log.id

    def update_refresh_log(
        self,
        run_id: int,
        fetched: int,
        processed: int,
        status: RunStatus | None = None,
    ) -> None:
        values: dict[str, Any] = {"papers_fetched": fetched, "papers_processed": processed}
        if status is not None:
            values["status"] = status.value
        with self._sessions.begin() as session:
            session.execute(update(RefreshLog).where(RefreshLog.id == run_id).values(**values))

    def mark_in_progress_interrupted(self) -> int:
        with self._sessions.begin() as session:
            result = session.execute(
                update(RefreshLog)
                .where(RefreshLog.status == RunStatus.IN_PROGRESS.value)
                .values(status=RunStatus.INTERRUPTED.value)
            )
            return result.rowcount

    # Aggregates

    def keyword_counts(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        search: str | None = None,
        type_filter: str | None = None,
        limit: int | None = None,
    ) -> list[FacetCount]:
        """Distinct records per keyword, exploding the JSON keyword list."""
        return self._exploded_counts("keywords", start, end, search, type_filter, limit)

    def author_counts(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[FacetCount]:
        return self._exploded_counts("authors", start, end, None, None, limit)

    def type_counts(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[FacetCount]:
        count = func.count().label("count")
        stmt = select(PaperRow.type, count).group_by(PaperRow.type).order_by(count.desc(), PaperRow.type)
        stmt = _apply_window(stmt, start, end)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._sessions() as session:
            return [FacetCount(label, int(n)) for label, n in session.execute(stmt)]

    def organism_counts(
        self,
        search: str | None = None,
        type_filter: str | None = None,
        limit: int | None = None,
    ) -> list[FacetCount]:
        count = func.count().label("count")
        stmt = (
            select(PaperRow.model_organism, count)
            .where(PaperRow.model_organism.is_not(None))
            .group_by(PaperRow.model_organism)
            .order_by(count.desc(), PaperRow.model_organism)
        )
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(PaperRow.title.like(pattern), PaperRow.summary.like(pattern)))
        if type_filter:
            stmt = stmt.where(PaperRow.type == type_filter)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._sessions() as session:
            return [FacetCount(label, int(n)) for label, n in session.execute(stmt)]

    def average_author_count(self, start: datetime | None = None, end: datetime | None = None) -> float:
        stmt = _apply_window(select(func.avg(func.json_array_length(PaperRow.authors))), start, end)
        with self._sessions() as session:
            return float(session.scalar(stmt) or 0.0)

    def _exploded_counts(
        self,
        column: str,
        start: datetime | None,
        end: datetime | None,
        search: str | None,
        type_filter: str | None,
        limit: int | None,
    ) -> list[FacetCount]:
        clauses: list[str] = []
        params: dict[str, Any] = {}
        binds = []
        if start is not None:
            clauses.append("papers.date >= :start")
            params["start"] = start
            binds.append(bindparam("start", type_=UTCDateTime()))
        if end is not None:
            clauses.append("papers.date < :end")
            params["end"] = end
            binds.append(bindparam("end", type_=UTCDateTime()))
        if search:
            clauses.append("(papers.title LIKE :pattern OR papers.summary LIKE :pattern)")
            params["pattern"] = f"%{search}%"
        if type_filter:
            clauses.append("papers.type = :type_filter")
            params["type_filter"] = type_filter

        sql = (
            "SELECT item.value AS label, count(DISTINCT papers.id) AS count "
            f"FROM papers, json_each(papers.{column}) AS item"
        )
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " GROUP BY item.value ORDER BY count DESC, label ASC"
        if limit is not None:
            sql += " LIMIT :limit"
            params["limit"] = limit

        stmt = text(sql).bindparams(*binds) if binds else text(sql)
        with self._sessions() as session:
            rows = session.execute(stmt, params).all()
        return [FacetCount(str(label), int(n)) for label, n in rows]

    # Facet tables

    def replace_keyword_facets(self, counts: Sequence[FacetCount], now: datetime | None = None) -> None:
        self._replace_facets(KeywordFacet, "keyword", counts, now or utcnow())

    def replace_organism_facets(self, counts: Sequence[FacetCount], now: datetime | None = None) -> None:
        self._replace_facets(OrganismFacet, "organism", counts, now or utcnow())

    def keyword_facets(self, limit: int) -> list[FacetCount]:
        stmt = select(KeywordFacet.keyword, KeywordFacet.count).order_by(
            KeywordFacet.count.desc(), KeywordFacet.keyword
        )
        with self._sessions() as session:
            return [FacetCount(label, int(n)) for label, n in session.execute(stmt.limit(limit))]

    def organism_facets(self, limit: int) -> list[FacetCount]:
        stmt = select(OrganismFacet.organism, OrganismFacet.count).order_by(
            OrganismFacet.count.desc(), OrganismFacet.organism
        )
        with self._sessions() as session:
            return [FacetCount(label, int(n)) for label, n in session.execute(stmt.limit(limit))]

    def _replace_facets(
        self,
        model: type[KeywordFacet] | type[OrganismFacet],
        key: str,
        counts: Sequence[FacetCount],
        now: datetime,
    ) -> None:
        key_column = getattr(model, key)
        with self._sessions.begin() as session:
            if counts:
                stmt = sqlite_insert(model).values(
                    [{key: c.label, "count": c.count, "last_updated": now} for c in counts]
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=[key_column],
                    set_={"count": stmt.excluded["count"], "last_updated": stmt.excluded["last_updated"]},
                )
                session.execute(stmt)
            session.execute(delete(model).where(key_column.not_in([c.label for c in counts])))


def _paper_row(paper: ProcessedPaper, now: datetime) -> PaperRow:
    return PaperRow(
        doi=paper.doi,
        title=paper.title,
        authors=list(paper.authors),
        date=paper.date,
        version=paper.version,
        type=paper.type,
        abstract=paper.abstract,
        summary=paper.summary,
        keywords=list(paper.keywords),
        methods=list(paper.methods),
        model_organism=paper.model_organism,
        markdown=paper.markdown,
        created_at=now,
        updated_at=now,
    )


def _apply_window(stmt: Any, start: datetime | None, end: datetime | None) -> Any:
    if start is not None:
        stmt = stmt.where(PaperRow.date >= start)
    if end is not None:
        stmt = stmt.where(PaperRow.date < end)
    return stmt


def _is_unique_violation(exc: IntegrityError) -> bool:
    message = str(exc.orig).lower()
    return "unique" in message or "duplicate" in message
