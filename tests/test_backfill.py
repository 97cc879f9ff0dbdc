from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

from backfill import MethodsBackfill
from errors import AnnotationError
from models import PaperAnalysis
from storage import utcnow


def _tomorrow():
    return utcnow() + timedelta(days=1)


def _annotator(**kwargs) -> MagicMock:
    annotator = MagicMock()
    annotator.annotate.return_value = PaperAnalysis(
        summary="Fresh summary",
        keywords=("auxin",),
        methods=("CRISPR",),
        model_organism="Oryza sativa",
    )
    for name, value in kwargs.items():
        setattr(annotator.annotate, name, value)
    return annotator


def test_backfill_rewrites_incomplete_records(store, make_record) -> None:
    store.insert_papers([
        make_record("10.1101/1", methods=()),
        make_record("10.1101/2", summary=None),
        make_record("10.1101/3"),
    ])

    result = MethodsBackfill(store, _annotator(), clock=_tomorrow).run()

    assert result.selected == 2
    assert result.updated == 2
    assert result.errors == []
    row = store.get_paper("10.1101/2")
    assert row.summary == "Fresh summary"
    assert row.methods == ["CRISPR"]
    assert row.model_organism == "Oryza sativa"
    assert "## AI Summary\nFresh summary" in row.markdown
    assert store.get_paper("10.1101/3").summary == "A summary."


def test_recently_touched_rows_are_left_alone(store, make_record) -> None:
    store.insert_paper(make_record("10.1101/1", methods=()))
    annotator = _annotator()

    result = MethodsBackfill(store, annotator).run()

    assert result.selected == 0
    annotator.annotate.assert_not_called()


def test_missing_abstract_and_failed_annotation_are_reported(store, make_record) -> None:
    store.insert_papers([
        make_record("10.1101/1", methods=(), abstract=None),
        make_record("10.1101/2", methods=()),
    ])
    annotator = _annotator(side_effect=AnnotationError("No response returned from API"))

    result = MethodsBackfill(store, annotator, clock=_tomorrow).run()

    assert result.updated == 0
    assert sorted(result.errors) == [
        "Failed to analyze 10.1101/2: No response returned from API",
        "Skipped 10.1101/1: missing abstract",
    ]


def test_limit_and_chunking_cover_selection(store, make_record) -> None:
    store.insert_papers([make_record(f"10.1101/{i}", methods=()) for i in range(12)])
    annotator = _annotator()

    result = MethodsBackfill(store, annotator, clock=_tomorrow).run(limit=8, chunk_size=3)

    assert result.selected == 8
    assert result.updated == 8
    assert annotator.annotate.call_count == 8
