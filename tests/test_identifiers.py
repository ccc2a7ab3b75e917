from citation_enrichment.core.identifiers import (
    get_arxiv_id,
    get_catalog_id,
    get_doi,
    normalize_doi,
    normalize_title,
    resolve_identifiers,
    titles_match,
)
from citation_enrichment.core.models import IdentifierKind, SideData
from citation_enrichment.stores.memory import LibraryRecord

CATALOG_ID = "649def34f8be52c8b66281af98ae884c09aef38b"


def _record(**fields) -> LibraryRecord:
    return LibraryRecord(key="R1", fields=fields)


def test_normalize_doi_strips_prefixes_and_lowercases():
    assert normalize_doi("https://doi.org/10.1000/ABC") == "10.1000/abc"
    assert normalize_doi("DOI:10.1000/XYZ") == "10.1000/xyz"
    assert normalize_doi("") is None
    assert normalize_doi(None) is None


def test_normalize_title_strips_punctuation_and_collapses_whitespace():
    assert normalize_title("Deep Learning, 2016!") == "deep learning 2016"
    assert normalize_title("  The   Quick Brown\tFox  ") == "the quick brown fox"
    assert normalize_title(None) == ""


def test_normalize_title_handles_unicode():
    assert normalize_title("Ｔｅｓｔ　Ｔｉｔｌｅ") == "test title"


def test_titles_match_requires_exact_normalized_equality():
    assert titles_match("Deep Learning, 2016!", "deep learning 2016")
    assert not titles_match("Deep Learning", "Deep Learning for Vision")
    assert not titles_match("", "")


def test_resolution_order_is_doi_arxiv_then_title():
    record = _record(
        DOI="10.1000/xyz",
        url="https://arxiv.org/abs/2106.00001",
        title="Adaptive Conformal Inference Under Distribution Shift",
    )

    candidates = resolve_identifiers(record, include_title=True)

    assert [kind for kind, _ in candidates] == [
        IdentifierKind.DOI,
        IdentifierKind.ARXIV,
        IdentifierKind.TITLE,
    ]
    assert candidates[1][1] == "2106.00001"


def test_title_is_only_included_when_enabled():
    record = _record(DOI="10.1000/xyz", title="Some Title")

    candidates = resolve_identifiers(record, include_title=False)

    assert candidates == [(IdentifierKind.DOI, "10.1000/xyz")]


def test_arxiv_id_prefers_extra_field_over_url():
    record = _record(
        extra="arXiv: 2301.12345\nPMID: 998877",
        url="https://arxiv.org/abs/1999.00001",
    )

    assert get_arxiv_id(record) == "2301.12345"


def test_each_kind_yields_at_most_one_candidate():
    record = _record(extra="PMID: 111\nPMID: 222\narXiv:1234.5678 arXiv:8765.4321")

    candidates = resolve_identifiers(record)

    assert candidates == [
        (IdentifierKind.ARXIV, "1234.5678"),
        (IdentifierKind.PMID, "111"),
    ]


def test_catalog_id_comes_from_side_data_before_extra_field():
    record = _record(extra=f"S2ID: {'a' * 40}")
    assert get_catalog_id(record) == "a" * 40

    record.set_side_data(SideData(paper_id=CATALOG_ID))
    assert get_catalog_id(record) == CATALOG_ID
    assert resolve_identifiers(record) == [(IdentifierKind.CATALOG_ID, CATALOG_ID)]


def test_record_without_identifiers_resolves_to_nothing():
    assert resolve_identifiers(_record(), include_title=True) == []


def test_doi_field_is_normalized_before_lookup():
    assert get_doi(_record(DOI=" https://doi.org/10.1000/ABC ")) == "10.1000/abc"
    assert get_doi(_record(DOI="doi:")) is None
    assert get_doi(_record()) is None
