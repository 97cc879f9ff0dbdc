"""Re-annotation of stored papers that are missing a summary or methods."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Callable

from biorxiv_feed import feed_category
from errors import AnnotationError
from models import BackfillResult, PaperUpdate
from openrouter_client import OpenRouterClient
from paper_markdown import PaperDocument, to_markdown
from storage import PaperRow, PaperStore, utcnow

BATCH_UPDATE_SIZE = 5
DEFAULT_LIMIT = 50
DEFAULT_CHUNK_SIZE = 5
# Rows touched more recently than this are left alone.
MIN_AGE = timedelta(hours=12)

LOGGER = logging.getLogger(__name__)


class MethodsBackfill:
    """The only path allowed to rewrite enrichment fields of an existing record."""

    def __init__(
        self,
        store: PaperStore,
        annotator: OpenRouterClient,
        clock: Callable[[], datetime] = utcnow,
        category: str | None = None,
    ) -> None:
        self.store = store
        self.annotator = annotator
        self._clock = clock
        self.category = category or feed_category()

    def run(self, limit: int = DEFAULT_LIMIT, chunk_size: int = DEFAULT_CHUNK_SIZE) -> BackfillResult:
        cutoff = self._clock() - MIN_AGE
        papers = self.store.papers_needing_backfill(cutoff, limit)
        result = BackfillResult(selected=len(papers))
        LOGGER.info("Backfill: %s papers selected (limit=%s, chunk=%s)", len(papers), limit, chunk_size)

        buffer: list[PaperUpdate] = []
        chunk_size = max(chunk_size, 1)
        for start in range(0, len(papers), chunk_size):
            chunk = papers[start : start + chunk_size]
            LOGGER.info(
                "Backfill: processing chunk %s of %s",
                start // chunk_size + 1,
                math.ceil(len(papers) / chunk_size),
            )
            for paper in chunk:
                update = self._reannotate(paper, result)
                if update is not None:
                    buffer.append(update)

            if len(buffer) >= BATCH_UPDATE_SIZE:
                result.updated += self.store.update_papers(buffer)
                buffer.clear()

        if buffer:
            result.updated += self.store.update_papers(buffer)

        LOGGER.info("Backfill complete: updated=%s errors=%s", result.updated, len(result.errors))
        return result

    def _reannotate(self, paper: PaperRow, result: BackfillResult) -> PaperUpdate | None:
        if not paper.abstract:
            LOGGER.info("Skipping %s due to missing abstract", paper.doi)
            result.errors.append(f"Skipped {paper.doi}: missing abstract")
            return None

        try:
            analysis = self.annotator.annotate(paper.abstract)
        except AnnotationError as exc:
            LOGGER.error("Failed to analyze %s: %s", paper.doi, exc)
            result.errors.append(f"Failed to analyze {paper.doi}: {exc}")
            return None

        markdown = to_markdown(
            PaperDocument(
                title=paper.title,
                authors=paper.authors or [],
                date=paper.date.date().isoformat(),
                version=paper.version,
                doi=paper.doi,
                category=self.category,
                abstract=paper.abstract,
                summary=analysis.summary,
                keywords=analysis.keywords,
            )
        )
        return PaperUpdate(
            doi=paper.doi,
            summary=analysis.summary,
            keywords=analysis.keywords,
            methods=analysis.methods,
            model_organism=analysis.model_organism,
            markdown=markdown,
        )
