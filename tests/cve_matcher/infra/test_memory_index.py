from __future__ import annotations

import pytest

from cve_matcher.core.errors import IndexUnavailableError
from cve_matcher.infra.memory_index import InMemoryCandidateIndex


class PairSource:
    def __init__(self, *pairs):
        self.pairs = set(pairs)
        self.calls = 0

    def all_vendor_product_pairs(self):
        self.calls += 1
        return set(self.pairs)


@pytest.fixture
def index():
    idx = InMemoryCandidateIndex(PairSource(("apache", "struts2"), ("eclipse", "jetty"), ("apache", "tomcat")))
    idx.rebuild()
    return idx


@pytest.mark.parametrize("terms", [["apache"], ["struts2"], ["struts", "2"], ["Apache Struts2"]])
def test_search_finds_pair_by_any_of_its_tokens(index, terms):
    pairs = {(e.vendor, e.product) for e in index.search(terms)}
    assert ("apache", "struts2") in pairs
    assert ("eclipse", "jetty") not in pairs


def test_vendor_product_search_requires_both_fields(index):
    hits = index.search_vendor_product(["apache"], ["struts2"])
    assert [(e.vendor, e.product) for e in hits] == [("apache", "struts2")]
    assert index.search_vendor_product(["apache"], ["jetty"]) == []


def test_equal_scores_keep_document_order(index):
    hits = index.search_vendor_product(["apache"], ["struts", "tomcat"])
    # pairs are indexed sorted, so apache:struts2 precedes apache:tomcat
    assert [e.product for e in hits] == ["struts2", "tomcat"]
    assert hits[0].search_score == hits[1].search_score
    assert hits[0].document_id < hits[1].document_id


def test_common_vendor_is_not_penalized():
    source = PairSource(*[("apache", f"product{i}") for i in range(50)], ("apache", "tomcat"), ("rare", "widget"))
    idx = InMemoryCandidateIndex(source)
    idx.rebuild()
    common = idx.search_vendor_product(["apache"], ["tomcat"])[0]
    rare = idx.search_vendor_product(["rare"], ["widget"])[0]
    assert common.search_score == rare.search_score


@pytest.mark.parametrize("terms", [[], [""], ["   "], ["the and of"]])
def test_blank_query_is_rejected(index, terms):
    with pytest.raises(ValueError):
        index.search(terms)


def test_max_results(index):
    assert len(index.search(["apache"], max_results=1)) == 1
    with pytest.raises(ValueError):
        index.search(["apache"], max_results=0)


def test_closed_index_reopens_from_database(index):
    index.close()
    assert not index.is_open
    assert index.num_docs() == 3
    assert index.is_open


def test_closed_index_without_database_is_unavailable():
    idx = InMemoryCandidateIndex()
    idx.add("apache", "struts2")
    idx.close()
    with pytest.raises(IndexUnavailableError):
        idx.search(["apache"])


def test_add_is_idempotent():
    idx = InMemoryCandidateIndex()
    first = idx.add("apache", "struts2")
    assert idx.add("apache", "struts2") == first
    assert idx.num_docs() == 1
