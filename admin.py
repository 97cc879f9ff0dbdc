"""Administrative operations. Every call returns a JSON-serializable dict and never raises."""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any

from backfill import DEFAULT_CHUNK_SIZE, DEFAULT_LIMIT, MethodsBackfill
from biorxiv_feed import BiorxivFeed
from cache import TTLCache
from errors import TrendError
from facets import FacetIndex
from ingest import IngestionOrchestrator
from openrouter_client import OpenRouterClient
from rate_limit import RateLimiter
from storage import PaperStore
from trends import TRENDS_TTL_SECONDS, TrendAggregator

LOGGER = logging.getLogger(__name__)


class AdminService:
    def __init__(
        self,
        store: PaperStore,
        orchestrator: IngestionOrchestrator,
        facet_index: FacetIndex,
        trends: TrendAggregator,
        backfill: MethodsBackfill,
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator
        self.facet_index = facet_index
        self.trends = trends
        self.backfill = backfill

    def refresh(self, days_back: int | None = None) -> dict[str, Any]:
        result = self.orchestrator.run(days_back)
        if isinstance(result, Exception):
            LOGGER.error("Refresh failed: %s", result)
            return {"success": False, "error": "Refresh failed"}
        return {"success": True, "result": result.to_dict()}

    def refresh_status(self) -> dict[str, Any]:
        try:
            log = self.store.latest_refresh_log()
        except Exception:
            LOGGER.exception("Failed to read refresh status")
            return {"success": False, "error": "Failed to read refresh status"}
        if log is None:
            return {"status": "none"}
        return {
            "status": log.status,
            "papersFetched": log.papers_fetched,
            "papersProcessed": log.papers_processed,
            "date": log.date.isoformat(),
            "intervalStart": log.interval_start.isoformat(),
            "intervalEnd": log.interval_end.isoformat(),
        }

    def reset_status(self) -> dict[str, Any]:
        """Mark every stuck in_progress refresh log as interrupted."""
        try:
            rows = self.store.mark_in_progress_interrupted()
        except Exception:
            LOGGER.exception("Error resetting refresh logs")
            return {"success": False, "error": "Failed to reset status"}
        LOGGER.info("Marked %s refresh logs as interrupted", rows)
        return {"success": True, "rowsAffected": rows}

    def clear_caches(self) -> dict[str, Any]:
        self.trends.clear_cache()
        return {"success": True}

    def backfill_methods(self, limit: int = DEFAULT_LIMIT, chunk_size: int = DEFAULT_CHUNK_SIZE) -> dict[str, Any]:
        try:
            result = self.backfill.run(limit=limit, chunk_size=chunk_size)
        except Exception as exc:
            LOGGER.exception("Backfill failed")
            return {"success": False, "error": str(exc)}
        return {
            "success": True,
            "message": "Migration batch complete",
            "config": {"limit": limit, "chunkSize": chunk_size},
            "processed": result.selected,
            "updated": result.updated,
            "errors": result.errors,
        }

    def populate_facets(self) -> dict[str, Any]:
        """Fill the facet tables once; a no-op when they already hold data."""
        try:
            if self.facet_index.has_precomputed():
                LOGGER.info("Facet tables already populated, skipping")
                return {"success": True, "skipped": True}
            keywords, organisms = self.facet_index.recompute()
        except Exception:
            LOGGER.exception("Facet population failed")
            return {"success": False, "error": "Failed to populate facets"}
        return {"success": True, "skipped": False, "keywords": keywords, "organisms": organisms}

    def trend_report(self, period: str) -> dict[str, Any]:
        try:
            return {"success": True, "result": asdict(self.trends.get_trends(period))}
        except TrendError as exc:
            return {"success": False, "error": exc.message, "details": exc.details}

    def insights(self) -> dict[str, Any]:
        try:
            return {"success": True, "result": asdict(self.trends.get_insights())}
        except Exception:
            LOGGER.exception("Failed to compute insights")
            return {"success": False, "error": "Failed to compute insights"}


def build_admin_service(database_url: str | None = None) -> AdminService:
    """Wire the store, clients and read paths around one shared rate limiter and cache."""
    store = PaperStore.from_url(database_url)
    annotator = OpenRouterClient(rate_limiter=RateLimiter())
    facet_index = FacetIndex(store)
    trends = TrendAggregator(store, cache=TTLCache(TRENDS_TTL_SECONDS))
    orchestrator = IngestionOrchestrator(store, BiorxivFeed(), annotator, facet_index)
    return AdminService(
        store=store,
        orchestrator=orchestrator,
        facet_index=facet_index,
        trends=trends,
        backfill=MethodsBackfill(store, annotator),
    )
