from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import Callable

import pytest

from models import ProcessedPaper
from storage import PaperStore

NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Monotonic clock whose sleep() just advances time."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def store(tmp_path: Path) -> PaperStore:
    return PaperStore.from_url(f"sqlite:///{tmp_path / 'digest.db'}")


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_record() -> Callable[..., ProcessedPaper]:
    def _make(doi: str, **overrides: object) -> ProcessedPaper:
        fields: dict[str, object] = {
            "doi": doi,
            "title": f"Paper {doi}",
            "authors": ("Ada Lovelace", "Barbara McClintock"),
            "date": NOW,
            "version": 1,
            "type": "new results",
            "abstract": "An abstract about roots.",
            "summary": "A summary.",
            "keywords": ("roots",),
            "methods": ("RNA-seq",),
            "model_organism": "Arabidopsis thaliana",
            "markdown": f"# Paper {doi}",
        }
        fields.update(overrides)
        return ProcessedPaper(**fields)

    return _make
