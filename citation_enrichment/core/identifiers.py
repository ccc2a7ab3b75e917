from __future__ import annotations

import re
import unicodedata
from typing import List, Optional, Tuple

from .models import IdentifierKind, Record

_DOI_PREFIX_PATTERN = re.compile(r"^(https?://)?(dx\.)?doi\.org/", re.IGNORECASE)
_ARXIV_EXTRA_PATTERN = re.compile(r"arXiv:\s*(\d+\.\d+)", re.IGNORECASE)
_ARXIV_URL_PATTERN = re.compile(r"arxiv\.org/abs/(\d+\.\d+)", re.IGNORECASE)
_PMID_PATTERN = re.compile(r"PMID:\s*(\d+)", re.IGNORECASE)
_CATALOG_ID_PATTERN = re.compile(
    r"(?:S2ID|Semantic Scholar ID):\s*([0-9a-f]{40})\b", re.IGNORECASE
)
_NON_WORD_PATTERN = re.compile(r"[^\w\s]")

Candidate = Tuple[IdentifierKind, str]


def normalize_doi(doi: str | None) -> str | None:
    """Normalize a DOI string into a canonical lowercase form.

    The normalization removes leading DOI prefixes (e.g., ``https://doi.org/`` or
    ``doi:``), trims whitespace, and lowercases the remaining identifier. Empty
    or missing values return ``None``.
    """

    if not doi:
        return None

    cleaned = doi.strip()
    cleaned = _DOI_PREFIX_PATTERN.sub("", cleaned)
    if cleaned.lower().startswith("doi:"):
        cleaned = cleaned.split(":", 1)[1]
    cleaned = cleaned.strip().lower()

    return cleaned or None


def normalize_title(title: str | None) -> str:
    """Normalize a title for exact comparison.

    Unicode is NFKC-normalized and lowercased, punctuation is stripped and
    whitespace runs collapse to single spaces, so ``"Deep Learning, 2016!"``
    becomes ``"deep learning 2016"``.
    """

    if not title:
        return ""

    normalized = unicodedata.normalize("NFKC", title).lower()
    stripped = _NON_WORD_PATTERN.sub("", normalized)
    return " ".join(stripped.split())


def titles_match(first: str | None, second: str | None) -> bool:
    normalized = normalize_title(first)
    return bool(normalized) and normalized == normalize_title(second)


def _field(record: Record, name: str) -> str:
    return (record.get_field(name) or "").strip()


def get_doi(record: Record) -> Optional[str]:
    return normalize_doi(_field(record, "DOI"))


def get_arxiv_id(record: Record) -> Optional[str]:
    match = _ARXIV_EXTRA_PATTERN.search(_field(record, "extra"))
    if match:
        return match.group(1)
    match = _ARXIV_URL_PATTERN.search(_field(record, "url"))
    return match.group(1) if match else None


def get_pmid(record: Record) -> Optional[str]:
    match = _PMID_PATTERN.search(_field(record, "extra"))
    return match.group(1) if match else None


def get_catalog_id(record: Record) -> Optional[str]:
    side_data = record.get_side_data()
    if side_data is not None and side_data.paper_id:
        return side_data.paper_id
    match = _CATALOG_ID_PATTERN.search(_field(record, "extra"))
    return match.group(1).lower() if match else None


def resolve_identifiers(record: Record, *, include_title: bool = False) -> List[Candidate]:
    """Return the record's lookup candidates in priority order.

    At most one candidate is produced per identifier kind. The title is only
    included when ``include_title`` is set.
    """

    candidates: List[Candidate] = []
    extractors = (
        (IdentifierKind.DOI, get_doi),
        (IdentifierKind.ARXIV, get_arxiv_id),
        (IdentifierKind.PMID, get_pmid),
        (IdentifierKind.CATALOG_ID, get_catalog_id),
    )
    for kind, extract in extractors:
        value = extract(record)
        if value:
            candidates.append((kind, value))

    if include_title:
        title = _field(record, "title")
        if title:
            candidates.append((IdentifierKind.TITLE, title))

    return candidates
