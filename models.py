"""Shared typed models for the pipeline."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True, slots=True)
class Paper:
    """Normalized bioRxiv record as returned by the feed."""

    doi: str
    title: str
    authors: tuple[str, ...]
    date: datetime
    version: int
    type: str
    abstract: str


@dataclass(frozen=True, slots=True)
class FeedPage:
    """One page of the feed plus the total the feed reports for the interval."""

    papers: list[Paper]
    total: int


@dataclass(frozen=True, slots=True)
class PaperAnalysis:
    """Normalized AI annotation for one abstract."""

    summary: str
    keywords: tuple[str, ...]
    methods: tuple[str, ...] = ()
    model_organism: str | None = None


@dataclass(frozen=True, slots=True)
class ProcessedPaper:
    """Fully enriched record ready to be persisted."""

    doi: str
    title: str
    authors: tuple[str, ...]
    date: datetime
    version: int
    type: str
    abstract: str | None
    summary: str
    keywords: tuple[str, ...]
    methods: tuple[str, ...]
    model_organism: str | None
    markdown: str


@dataclass(frozen=True, slots=True)
class PaperUpdate:
    """Enrichment fields rewritten by the backfill path for an existing record."""

    doi: str
    summary: str
    keywords: tuple[str, ...]
    methods: tuple[str, ...]
    model_organism: str | None
    markdown: str


class RunStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"
    INTERRUPTED = "interrupted"


@dataclass(frozen=True, slots=True)
class FetchResult:
    """Outcome of one successful ingestion run."""

    fetched: int
    processed: int
    errors: int
    interval_start: datetime
    interval_end: datetime
    skipped: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "fetched": self.fetched,
            "processed": self.processed,
            "errors": self.errors,
            "skipped": self.skipped,
            "intervalStart": self.interval_start.isoformat(),
            "intervalEnd": self.interval_end.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class FacetCount:
    label: str
    count: int


@dataclass(slots=True)
class BackfillResult:
    selected: int = 0
    updated: int = 0
    errors: list[str] = field(default_factory=list)
