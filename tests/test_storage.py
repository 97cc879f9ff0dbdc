from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.orm import Session

from conftest import NOW
from errors import StorageConflict
from models import FacetCount, PaperUpdate, RunStatus
from storage import PaperRow, PaperStore


def _set_updated_at(store: PaperStore, doi: str, when: datetime) -> None:
    with Session(store.engine) as session, session.begin():
        session.execute(update(PaperRow).where(PaperRow.doi == doi).values(updated_at=when))


def test_insert_and_get_round_trip(store, make_record) -> None:
    store.insert_paper(make_record("10.1101/1", keywords=("roots", "drought")))

    row = store.get_paper("10.1101/1")

    assert row is not None
    assert row.title == "Paper 10.1101/1"
    assert row.authors == ["Ada Lovelace", "Barbara McClintock"]
    assert row.keywords == ["roots", "drought"]
    assert row.date == NOW
    assert row.date.tzinfo is not None
    assert store.get_paper("10.1101/missing") is None


def test_duplicate_doi_raises_and_keeps_original(store, make_record) -> None:
    store.insert_paper(make_record("10.1101/1", summary="first"))

    with pytest.raises(StorageConflict):
        store.insert_paper(make_record("10.1101/1", summary="second"))

    assert store.get_paper("10.1101/1").summary == "first"
    assert store.count_papers() == 1


def test_batch_insert_is_all_or_nothing(store, make_record) -> None:
    store.insert_paper(make_record("10.1101/2"))

    with pytest.raises(StorageConflict):
        store.insert_papers([make_record("10.1101/1"), make_record("10.1101/2"), make_record("10.1101/3")])

    assert store.existing_dois(["10.1101/1", "10.1101/2", "10.1101/3"]) == {"10.1101/2"}


def test_existing_summaries_reports_partial_rows(store, make_record) -> None:
    store.insert_papers([make_record("10.1101/1"), make_record("10.1101/2", summary=None)])

    summaries = store.existing_summaries(["10.1101/1", "10.1101/2", "10.1101/3"])

    assert summaries == {"10.1101/1": "A summary.", "10.1101/2": None}
    assert store.existing_dois([]) == set()


def test_count_papers_uses_half_open_window(store, make_record) -> None:
    store.insert_papers([
        make_record("10.1101/old", date=NOW - timedelta(days=10)),
        make_record("10.1101/start", date=NOW - timedelta(days=7)),
        make_record("10.1101/end", date=NOW),
    ])

    assert store.count_papers(NOW - timedelta(days=7), NOW) == 1
    assert store.count_papers() == 3


def test_recent_papers_newest_first(store, make_record) -> None:
    store.insert_papers([
        make_record("10.1101/a", date=NOW - timedelta(days=3)),
        make_record("10.1101/b", date=NOW - timedelta(days=1)),
        make_record("10.1101/c", date=NOW - timedelta(days=2)),
    ])

    assert [p.doi for p in store.recent_papers(2)] == ["10.1101/b", "10.1101/c"]


def test_refresh_log_lifecycle(store) -> None:
    assert store.latest_refresh_log() is None

    run_id = store.create_refresh_log(NOW - timedelta(days=7), NOW, started_at=NOW)
    store.update_refresh_log(run_id, fetched=12, processed=5)
    log = store.get_refresh_log(run_id)

    assert log.status == RunStatus.IN_PROGRESS.value
    assert (log.papers_fetched, log.papers_processed) == (12, 5)

    store.update_refresh_log(run_id, fetched=12, processed=10, status=RunStatus.COMPLETED)
    latest = store.latest_refresh_log()

    assert latest.id == run_id
    assert latest.status == "completed"
    assert latest.date == NOW
    assert latest.interval_start == NOW - timedelta(days=7)


def test_mark_in_progress_interrupted_only_touches_running(store) -> None:
    done = store.create_refresh_log(NOW, NOW, started_at=NOW - timedelta(days=1))
    store.update_refresh_log(done, 0, 0, status=RunStatus.COMPLETED)
    store.create_refresh_log(NOW, NOW, started_at=NOW)

    assert store.mark_in_progress_interrupted() == 1
    assert store.latest_refresh_log().status == "interrupted"
    assert store.get_refresh_log(done).status == "completed"


def test_keyword_counts_explode_and_filter(store, make_record) -> None:
    store.insert_papers([
        make_record("10.1101/1", title="Drought roots", keywords=("roots", "drought")),
        make_record("10.1101/2", title="Leaf shape", keywords=("leaf", "roots"), type="confirmatory results"),
        make_record("10.1101/3", title="Old paper", keywords=("roots",), date=NOW - timedelta(days=60)),
    ])

    assert store.keyword_counts() == [
        FacetCount("roots", 3),
        FacetCount("drought", 1),
        FacetCount("leaf", 1),
    ]
    assert store.keyword_counts(start=NOW - timedelta(days=30), limit=1) == [FacetCount("roots", 2)]
    assert store.keyword_counts(search="drought") == [FacetCount("drought", 1), FacetCount("roots", 1)]
    assert store.keyword_counts(type_filter="confirmatory results") == [
        FacetCount("leaf", 1),
        FacetCount("roots", 1),
    ]


def test_author_type_and_organism_counts(store, make_record) -> None:
    store.insert_papers([
        make_record("10.1101/1", authors=("Smith", "Doe")),
        make_record("10.1101/2", authors=("Smith",), type="contradictory results", model_organism=None),
    ])

    assert store.author_counts(limit=1) == [FacetCount("Smith", 2)]
    assert store.type_counts() == [FacetCount("contradictory results", 1), FacetCount("new results", 1)]
    assert store.organism_counts() == [FacetCount("Arabidopsis thaliana", 1)]
    assert store.average_author_count() == pytest.approx(1.5)


def test_papers_needing_backfill_selects_incomplete_and_old(store, make_record) -> None:
    long_ago = datetime(2020, 1, 1, tzinfo=UTC)
    store.insert_papers([
        make_record("10.1101/complete"),
        make_record("10.1101/no-summary", summary=None),
        make_record("10.1101/no-methods", methods=()),
        make_record("10.1101/fresh", methods=()),
    ])
    for doi in ("10.1101/complete", "10.1101/no-summary", "10.1101/no-methods"):
        _set_updated_at(store, doi, long_ago)

    selected = store.papers_needing_backfill(datetime(2021, 1, 1, tzinfo=UTC), limit=10)

    assert {p.doi for p in selected} == {"10.1101/no-summary", "10.1101/no-methods"}


def test_update_papers_rewrites_enrichment(store, make_record) -> None:
    store.insert_paper(make_record("10.1101/1", summary=None, methods=()))

    updated = store.update_papers([
        PaperUpdate("10.1101/1", "New summary", ("k",), ("qPCR",), None, "# md"),
        PaperUpdate("10.1101/missing", "x", (), (), None, "# md"),
    ])
    row = store.get_paper("10.1101/1")

    assert updated == 1
    assert row.summary == "New summary"
    assert row.methods == ["qPCR"]
    assert row.model_organism is None


def test_replace_facets_upserts_and_drops_stale(store) -> None:
    store.replace_keyword_facets([FacetCount("roots", 2), FacetCount("leaf", 1)], NOW)
    store.replace_keyword_facets([FacetCount("roots", 5), FacetCount("seed", 3)], NOW)

    assert store.keyword_facets(limit=10) == [FacetCount("roots", 5), FacetCount("seed", 3)]

    store.replace_organism_facets([], NOW)
    assert store.organism_facets(limit=10) == []
