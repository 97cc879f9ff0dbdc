from __future__ import annotations

import pytest

from conftest import NOW
from facets import FacetIndex, LiveFacets, PrecomputedFacets, is_filtered
from models import FacetCount


def test_recompute_fills_both_tables(store, make_record) -> None:
    store.insert_papers([
        make_record("10.1101/1", keywords=("roots", "drought")),
        make_record("10.1101/2", keywords=("roots",), model_organism="Zea mays"),
    ])
    index = FacetIndex(store, clock=lambda: NOW)

    assert index.recompute() == (2, 2)
    assert index.get_keyword_facets() == [FacetCount("roots", 2), FacetCount("drought", 1)]
    assert index.get_organism_facets() == [
        FacetCount("Arabidopsis thaliana", 1),
        FacetCount("Zea mays", 1),
    ]
    assert index.has_precomputed()


def test_recompute_removes_labels_no_longer_present(store, make_record) -> None:
    store.replace_keyword_facets([FacetCount("obsolete", 9)], NOW)
    store.insert_paper(make_record("10.1101/1", keywords=("roots",)))

    FacetIndex(store).recompute()

    assert store.keyword_facets(limit=10) == [FacetCount("roots", 1)]


def test_unfiltered_reads_precomputed_table(store, make_record) -> None:
    store.insert_paper(make_record("10.1101/1", keywords=("roots",)))
    index = FacetIndex(store)

    assert isinstance(index.source(), PrecomputedFacets)
    assert index.get_keyword_facets() == []
    assert not index.has_precomputed()


def test_filtered_view_is_computed_live(store, make_record) -> None:
    store.insert_papers([
        make_record("10.1101/1", title="Drought stress", keywords=("drought",)),
        make_record("10.1101/2", title="Leaf growth", keywords=("leaf",)),
    ])
    index = FacetIndex(store)
    index.recompute()

    assert isinstance(index.source(search="drought"), LiveFacets)
    assert index.get_keyword_facets(search="drought") == [FacetCount("drought", 1)]
    assert index.get_keyword_facets(type_filter="withdrawn") == []
    assert index.get_organism_facets(search="leaf", limit=5) == [FacetCount("Arabidopsis thaliana", 1)]


@pytest.mark.parametrize(("search", "type_filter", "expected"), [
    (None, None, False),
    ("", "", False),
    ("roots", None, True),
    (None, "new results", True),
])
def test_is_filtered(search, type_filter, expected) -> None:
    assert is_filtered(search, type_filter) is expected
