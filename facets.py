"""Keyword and model-organism facet counts for filtering the paper list."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Protocol

from models import FacetCount
from storage import PaperStore, utcnow

DEFAULT_FACET_LIMIT = 20

LOGGER = logging.getLogger(__name__)


class FacetSource(Protocol):
    def keywords(self, limit: int) -> list[FacetCount]: ...

    def organisms(self, limit: int) -> list[FacetCount]: ...


class PrecomputedFacets:
    """Reads the global distribution from the facet tables."""

    def __init__(self, store: PaperStore) -> None:
        self.store = store

    def keywords(self, limit: int) -> list[FacetCount]:
        return self.store.keyword_facets(limit)

    def organisms(self, limit: int) -> list[FacetCount]:
        return self.store.organism_facets(limit)


class LiveFacets:
    """Aggregates directly over the records matching a search and type filter."""

    def __init__(self, store: PaperStore, search: str | None, type_filter: str | None) -> None:
        self.store = store
        self.search = search
        self.type_filter = type_filter

    def keywords(self, limit: int) -> list[FacetCount]:
        return self.store.keyword_counts(search=self.search, type_filter=self.type_filter, limit=limit)

    def organisms(self, limit: int) -> list[FacetCount]:
        return self.store.organism_counts(search=self.search, type_filter=self.type_filter, limit=limit)


def is_filtered(search: str | None, type_filter: str | None) -> bool:
    return bool(search) or bool(type_filter)


class FacetIndex:
    """Owns the keyword/organism facet tables.

    The tables only ever hold the unfiltered distribution; any filtered view
    is computed live.
    """

    def __init__(self, store: PaperStore, clock: Callable[[], datetime] = utcnow) -> None:
        self.store = store
        self._clock = clock

    def recompute(self) -> tuple[int, int]:
        """Rebuild both facet tables from all records.

        Returns the number of keyword and organism labels written.
        """
        LOGGER.info("Recomputing keyword and organism facets")
        now = self._clock()
        keywords = self.store.keyword_counts()
        organisms = self.store.organism_counts()
        self.store.replace_keyword_facets(keywords, now)
        self.store.replace_organism_facets(organisms, now)
        LOGGER.info("Facets recomputed: keywords=%s organisms=%s", len(keywords), len(organisms))
        return len(keywords), len(organisms)

    def has_precomputed(self) -> bool:
        return bool(self.store.keyword_facets(limit=1))

    def source(self, search: str | None = None, type_filter: str | None = None) -> FacetSource:
        if is_filtered(search, type_filter):
            return LiveFacets(self.store, search, type_filter)
        return PrecomputedFacets(self.store)

    def get_keyword_facets(
        self,
        search: str | None = None,
        type_filter: str | None = None,
        limit: int = DEFAULT_FACET_LIMIT,
    ) -> list[FacetCount]:
        return self.source(search, type_filter).keywords(limit)

    def get_organism_facets(
        self,
        search: str | None = None,
        type_filter: str | None = None,
        limit: int = DEFAULT_FACET_LIMIT,
    ) -> list[FacetCount]:
        return self.source(search, type_filter).organisms(limit)
