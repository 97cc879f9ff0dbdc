"""Ingestion run: bioRxiv pages -> dedup -> OpenRouter annotation -> batched inserts."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from biorxiv_feed import PAGE_SIZE, BiorxivFeed, feed_category
from errors import AnnotationError, OrchestrationError, StorageConflict
from facets import FacetIndex
from models import FetchResult, Paper, PaperAnalysis, ProcessedPaper, RunStatus
from openrouter_client import OpenRouterClient
from paper_markdown import PaperDocument, to_markdown
from storage import PaperStore, utcnow

BATCH_SIZE = 10
DEFAULT_DAYS_BACK = 7
MAX_DAYS_BACK = 7

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class _RunState:
    run_id: int
    fetched: int = 0
    processed: int = 0
    errors: int = 0
    skipped: int = 0
    seen: set[str] = field(default_factory=set)
    buffer: list[ProcessedPaper] = field(default_factory=list)


class IngestionOrchestrator:
    """Drives one ingestion run end to end.

    Dedup happens three times: a batched existence query per page, a
    recheck of the page's remaining candidates after every batch flush, and
    finally the unique DOI constraint at insert time. Only the last one is
    authoritative when runs overlap.
    """

    def __init__(
        self,
        store: PaperStore,
        feed: BiorxivFeed,
        annotator: OpenRouterClient,
        facet_index: FacetIndex | None = None,
        clock: Callable[[], datetime] = utcnow,
        batch_size: int = BATCH_SIZE,
        category: str | None = None,
    ) -> None:
        self.store = store
        self.feed = feed
        self.annotator = annotator
        self.facet_index = facet_index
        self._clock = clock
        self.batch_size = batch_size
        self.category = category or feed_category()

    def run(self, days_back: int | None = None) -> FetchResult | Exception:
        """Run one ingestion pass.

        Returns a FetchResult on success. Any run-level failure is returned
        (not raised) after a best-effort attempt to mark the refresh log as
        errored.
        """
        try:
            now = self._clock()
            interval_start, interval_end = self.compute_interval(now, days_back)
            run_id = self._create_run_log(interval_start, interval_end, now)
        except Exception as exc:
            LOGGER.exception("Failed to start ingestion run")
            return exc

        state = _RunState(run_id=run_id)
        LOGGER.info(
            "Ingestion run %s started: interval=%s..%s",
            run_id,
            interval_start.isoformat(),
            interval_end.isoformat(),
        )

        try:
            self._paginate(state, interval_start, interval_end)
            self._flush(state)
            self.store.update_refresh_log(run_id, state.fetched, state.processed, RunStatus.COMPLETED)
        except Exception as exc:
            LOGGER.exception("Ingestion run %s failed", run_id)
            try:
                self.store.update_refresh_log(run_id, state.fetched, state.processed, RunStatus.ERROR)
            except Exception:
                LOGGER.exception("Failed to mark refresh log %s as errored", run_id)
            return exc

        if state.processed > 0 and self.facet_index is not None:
            try:
                self.facet_index.recompute()
            except Exception:
                LOGGER.exception("Facet recompute failed (non-fatal)")

        LOGGER.info(
            "Ingestion run %s complete: fetched=%s processed=%s skipped=%s errors=%s",
            run_id,
            state.fetched,
            state.processed,
            state.skipped,
            state.errors,
        )
        return FetchResult(
            fetched=state.fetched,
            processed=state.processed,
            errors=state.errors,
            interval_start=interval_start,
            interval_end=interval_end,
            skipped=state.skipped,
        )

    def compute_interval(self, now: datetime, days_back: int | None = None) -> tuple[datetime, datetime]:
        """Return the [start, end) interval to fetch, ending at `now`.

        An explicit `days_back` wins. Otherwise the gap since the latest
        refresh log is fetched, capped at MAX_DAYS_BACK days, or
        DEFAULT_DAYS_BACK days when there has never been a run.
        """
        if days_back:
            return min(now - timedelta(days=days_back), now), now

        try:
            last = self.store.latest_refresh_log()
        except Exception as exc:
            raise OrchestrationError("Failed to read latest refresh log", details=exc) from exc

        if last is None:
            return now - timedelta(days=DEFAULT_DAYS_BACK), now

        days_since = math.floor((now - last.date) / timedelta(days=1))
        days_to_fetch = min(MAX_DAYS_BACK, max(days_since, 0))
        return now - timedelta(days=days_to_fetch), now

    def _create_run_log(self, interval_start: datetime, interval_end: datetime, now: datetime) -> int:
        try:
            return self.store.create_refresh_log(interval_start, interval_end, started_at=now)
        except Exception as exc:
            raise OrchestrationError("Failed to create refresh log", details=exc) from exc

    def _paginate(self, state: _RunState, interval_start: datetime, interval_end: datetime) -> None:
        cursor = 0
        while True:
            page = self.feed.fetch(interval_start, interval_end, cursor)
            state.fetched += len(page.papers)
            self._process_page(state, page.papers)

            if len(page.papers) < PAGE_SIZE or state.fetched >= page.total:
                break
            cursor += PAGE_SIZE

    def _process_page(self, state: _RunState, papers: list[Paper]) -> None:
        existing = self.store.existing_dois(p.doi for p in papers)
        candidates = [p for p in papers if p.doi not in existing]
        state.skipped += len(papers) - len(candidates)
        if not candidates:
            return

        # Refreshed after every flush: another run may have stored some of the
        # remaining candidates while this one was annotating.
        snapshot: dict[str, str | None] = {}

        for index, paper in enumerate(candidates):
            if paper.doi in snapshot:
                if snapshot[paper.doi]:
                    LOGGER.info("Skipping already processed paper: %s", paper.doi)
                else:
                    LOGGER.info("Skipping partially processed paper: %s", paper.doi)
                state.skipped += 1
                continue
            if paper.doi in state.seen:
                LOGGER.debug("Skipping duplicate DOI within run: %s", paper.doi)
                state.skipped += 1
                continue
            state.seen.add(paper.doi)

            try:
                analysis = self.annotator.annotate(paper.abstract)
            except AnnotationError as exc:
                LOGGER.error("Failed to generate summary for %s: %s", paper.doi, exc)
                state.errors += 1
                continue

            state.buffer.append(self._build_record(paper, analysis))
            if len(state.buffer) >= self.batch_size:
                self._flush(state)
                snapshot = self.store.existing_summaries(p.doi for p in candidates[index + 1 :])

    def _build_record(self, paper: Paper, analysis: PaperAnalysis) -> ProcessedPaper:
        markdown = to_markdown(
            PaperDocument(
                title=paper.title,
                authors=paper.authors,
                date=paper.date.date().isoformat(),
                version=paper.version,
                doi=paper.doi,
                category=self.category,
                abstract=paper.abstract,
                summary=analysis.summary,
                keywords=analysis.keywords,
            )
        )
        return ProcessedPaper(
            doi=paper.doi,
            title=paper.title,
            authors=paper.authors,
            date=paper.date,
            version=paper.version,
            type=paper.type,
            abstract=paper.abstract or None,
            summary=analysis.summary,
            keywords=analysis.keywords,
            methods=analysis.methods,
            model_organism=analysis.model_organism,
            markdown=markdown,
        )

    def _flush(self, state: _RunState) -> None:
        """Persist the buffer, then advance the refresh log counters."""
        if not state.buffer:
            return

        batch = list(state.buffer)
        try:
            self.store.insert_papers(batch)
            inserted = len(batch)
        except StorageConflict:
            LOGGER.warning("Batch insert hit a DOI conflict, retrying %s papers one by one", len(batch))
            inserted = 0
            for paper in batch:
                try:
                    self.store.insert_paper(paper)
                    inserted += 1
                except StorageConflict:
                    LOGGER.info("Paper already stored by another run: %s", paper.doi)
                    state.skipped += 1

        state.processed += inserted
        self.store.update_refresh_log(state.run_id, state.fetched, state.processed)
        state.buffer.clear()
        LOGGER.info("Batch inserted %s papers (run %s)", inserted, state.run_id)
