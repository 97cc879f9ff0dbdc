"""Read-side trend and insight aggregation over stored papers."""

from __future__ import annotations

import logging
import math
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from itertools import combinations
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from cache import TTLCache
from errors import TrendError
from models import FacetCount
from storage import PaperStore, utcnow

PERIOD_WINDOWS: dict[str, timedelta] = {
    "day": timedelta(hours=24),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
}
TRENDS_TTL_SECONDS = 60 * 60
INSIGHTS_TTL_SECONDS = 30 * 60
TOP_N = 10

MOMENTUM_RECENT_WINDOW = timedelta(days=30)
MOMENTUM_BASELINE_START = timedelta(days=180)
# Baseline spans five months against a one-month recent window.
MOMENTUM_BASELINE_MONTHS = 5
MOMENTUM_CANDIDATES = 50
MOMENTUM_MIN_RECENT = 2

COOCCURRENCE_WINDOW = timedelta(days=90)
COOCCURRENCE_SAMPLE = 100
COOCCURRENCE_TOP_N = 15
NETWORK_SAMPLE = 50
NETWORK_MAX_AUTHORS = 5
METHODS_SAMPLE = 100
MIN_PAIR_COUNT = 2

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PeriodStats:
    total_papers: int
    avg_authors: float


@dataclass(frozen=True, slots=True)
class TrendResult:
    period: str
    keywords: list[FacetCount]
    paper_types: list[FacetCount]
    authors: list[FacetCount]
    stats: PeriodStats


@dataclass(frozen=True, slots=True)
class TopicMomentum:
    keyword: str
    recent_count: int
    previous_count: int
    momentum: float


@dataclass(frozen=True, slots=True)
class PairCount:
    first: str
    second: str
    count: int


@dataclass(frozen=True, slots=True)
class Insights:
    momentum: list[TopicMomentum]
    network: list[PairCount]
    methods: list[FacetCount]
    clusters: list[PairCount]


def get_date_interval(period: str, now: datetime) -> tuple[datetime, datetime]:
    try:
        window = PERIOD_WINDOWS[period]
    except KeyError:
        raise TrendError(f"Unknown trend period: {period}") from None
    return now - window, now


def round_half_up(value: float, places: int = 1) -> float:
    """Round halves up, so 2.25 becomes 2.3."""
    scale = 10**places
    return math.floor(value * scale + 0.5) / scale


def compute_momentum(recent: Mapping[str, int], previous: Mapping[str, int]) -> list[TopicMomentum]:
    """Score keyword growth of the recent window against the normalized baseline."""
    scored: list[TopicMomentum] = []
    for keyword, recent_count in recent.items():
        if recent_count < MOMENTUM_MIN_RECENT:
            continue
        previous_count = previous.get(keyword, 0)
        normalized = previous_count / MOMENTUM_BASELINE_MONTHS
        score = float(recent_count) if normalized == 0 else (recent_count - normalized) / normalized
        scored.append(TopicMomentum(keyword, recent_count, previous_count, score))
    scored.sort(key=lambda m: m.momentum, reverse=True)
    return scored[:TOP_N]


def count_pairs(groups: Iterable[Iterable[str]], min_count: int = MIN_PAIR_COUNT) -> list[PairCount]:
    """Tally unordered pairs within each group, dropping pairs below `min_count`."""
    tally: Counter[tuple[str, str]] = Counter()
    for group in groups:
        items = sorted(set(group))
        tally.update(combinations(items, 2))
    pairs = [PairCount(a, b, n) for (a, b), n in tally.items() if n >= min_count]
    pairs.sort(key=lambda p: (-p.count, p.first, p.second))
    return pairs


class TrendAggregator:
    def __init__(
        self,
        store: PaperStore,
        cache: TTLCache | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.cache = cache or TTLCache(TRENDS_TTL_SECONDS)
        self._clock = clock

    def clear_cache(self) -> None:
        self.cache.invalidate()

    def get_trends(self, period: str) -> TrendResult:
        """Top keywords, types and authors plus summary stats for a period.

        Raises TrendError for an unknown period or a storage failure.
        """
        if period not in PERIOD_WINDOWS:
            raise TrendError(f"Unknown trend period: {period}")
        return self.cache.get_or_compute(
            f"trends:{period}", lambda: self._compute_trends(period), TRENDS_TTL_SECONDS
        )

    def get_all_trends(self) -> dict[str, TrendResult]:
        trends: dict[str, TrendResult] = {}
        for period in PERIOD_WINDOWS:
            try:
                trends[period] = self.get_trends(period)
            except TrendError as exc:
                LOGGER.error("Failed to fetch trends for %s: %s", period, exc.details or exc)
        return trends

    def get_insights(self) -> Insights:
        return self.cache.get_or_compute("insights", self._compute_insights, INSIGHTS_TTL_SECONDS)

    def get_topic_momentum(self) -> list[TopicMomentum]:
        now = self._clock()
        recent_start = now - MOMENTUM_RECENT_WINDOW
        recent = self.store.keyword_counts(start=recent_start, limit=MOMENTUM_CANDIDATES)
        previous = self.store.keyword_counts(start=now - MOMENTUM_BASELINE_START, end=recent_start)
        return compute_momentum(
            {c.label: c.count for c in recent},
            {c.label: c.count for c in previous},
        )

    def get_keyword_cooccurrence(self) -> list[PairCount]:
        papers = self.store.recent_papers(COOCCURRENCE_SAMPLE, since=self._clock() - COOCCURRENCE_WINDOW)
        return count_pairs(paper.keywords or [] for paper in papers)[:COOCCURRENCE_TOP_N]

    def get_author_network(self) -> list[PairCount]:
        papers = self.store.recent_papers(NETWORK_SAMPLE)
        return count_pairs((paper.authors or [])[:NETWORK_MAX_AUTHORS] for paper in papers)[:TOP_N]

    def get_method_trends(self) -> list[FacetCount]:
        counts: Counter[str] = Counter()
        for paper in self.store.recent_papers(METHODS_SAMPLE):
            counts.update(m for m in paper.methods or [] if m)
        return [FacetCount(method, n) for method, n in counts.most_common(TOP_N)]

    def _compute_trends(self, period: str) -> TrendResult:
        start, end = get_date_interval(period, self._clock())
        try:
            stats = PeriodStats(
                total_papers=self.store.count_papers(start, end),
                avg_authors=round_half_up(self.store.average_author_count(start, end)),
            )
            return TrendResult(
                period=period,
                keywords=self.store.keyword_counts(start=start, end=end, limit=TOP_N),
                paper_types=self.store.type_counts(start, end, limit=TOP_N),
                authors=self.store.author_counts(start, end, limit=TOP_N),
                stats=stats,
            )
        except SQLAlchemyError as exc:
            LOGGER.exception("Failed to fetch trends for %s", period)
            raise TrendError("Failed to fetch trends", details=str(exc)) from exc

    def _compute_insights(self) -> Insights:
        return Insights(
            momentum=self.get_topic_momentum(),
            network=self.get_author_network(),
            methods=self.get_method_trends(),
            clusters=self.get_keyword_cooccurrence(),
        )
