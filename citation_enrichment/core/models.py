from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Hashable, List, Optional, Protocol, Union, runtime_checkable

CATALOG_PAPER_URL = "https://www.semanticscholar.org/paper/{paper_id}"


def catalog_url_for(paper_id: Optional[str]) -> Optional[str]:
    """Public catalog page of a paper, or ``None`` without an id."""

    return CATALOG_PAPER_URL.format(paper_id=paper_id) if paper_id else None


class IdentifierKind(str, Enum):
    """Identifier kinds in lookup priority order."""

    DOI = "DOI"
    ARXIV = "ARXIV"
    PMID = "PMID"
    CATALOG_ID = "CATALOG_ID"
    TITLE = "TITLE"


class RecordKind(str, Enum):
    JOURNAL_ARTICLE = "journalArticle"
    CONFERENCE_PAPER = "conferencePaper"
    BOOK_SECTION = "bookSection"
    OTHER = "other"

    @classmethod
    def from_value(cls, value: Optional[str]) -> "RecordKind":
        for kind in cls:
            if kind.value == value:
                return kind
        return cls.OTHER


@dataclass
class SideData:
    """Derived catalog metadata kept outside the exported bibliographic fields."""

    paper_id: Optional[str] = None
    citation_count: Optional[int] = None
    influential_citation_count: Optional[int] = None
    reference_count: Optional[int] = None
    last_updated: Optional[str] = None
    arxiv_id: Optional[str] = None
    fields_of_study: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value not in (None, [])}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "SideData":
        fields_of_study = payload.get("fields_of_study") or []
        return cls(
            paper_id=payload.get("paper_id"),
            citation_count=payload.get("citation_count"),
            influential_citation_count=payload.get("influential_citation_count"),
            reference_count=payload.get("reference_count"),
            last_updated=payload.get("last_updated"),
            arxiv_id=payload.get("arxiv_id"),
            fields_of_study=[str(item) for item in fields_of_study if item],
        )


@runtime_checkable
class Record(Protocol):
    """Capabilities the engine needs from a host bibliographic record."""

    @property
    def key(self) -> Hashable: ...

    @property
    def kind(self) -> RecordKind: ...

    def get_field(self, name: str) -> Optional[str]: ...

    def set_field(self, name: str, value: str) -> None: ...

    def get_side_data(self) -> Optional[SideData]: ...

    def set_side_data(self, data: SideData) -> None: ...

    def save(self) -> None: ...


@runtime_checkable
class RecordStore(Protocol):
    """Capabilities the engine needs from the host record store."""

    def list_all_records(self, scope: Optional[str] = None) -> List[Record]: ...

    def on_record_created(self, callback: Callable[[Record], None]) -> Hashable: ...

    def remove_observer(self, handle: Hashable) -> None: ...


@dataclass
class CatalogResult:
    """Normalized representation of a catalog paper."""

    paper_id: str
    citation_count: Optional[int] = None
    influential_citation_count: Optional[int] = None
    reference_count: Optional[int] = None
    external_ids: Dict[str, str] = field(default_factory=dict)
    abstract: Optional[str] = None
    publication_date: Optional[str] = None
    venue: Optional[str] = None
    open_access_url: Optional[str] = None
    fields_of_study: List[str] = field(default_factory=list)
    title: Optional[str] = None

    @property
    def doi(self) -> Optional[str]:
        return self.external_ids.get("DOI")

    @property
    def arxiv_id(self) -> Optional[str]:
        return self.external_ids.get("ArXiv")


@dataclass(frozen=True)
class Found:
    result: CatalogResult


@dataclass(frozen=True)
class NotFound:
    reason: str = "no match"


@dataclass(frozen=True)
class RateLimited:
    retry_after: Optional[float] = None


FetchOutcome = Union[Found, NotFound, RateLimited]


@dataclass
class RetryEntry:
    record: Record
    retry_count: int = 0


__all__ = [
    "CATALOG_PAPER_URL",
    "CatalogResult",
    "FetchOutcome",
    "Found",
    "IdentifierKind",
    "NotFound",
    "RateLimited",
    "Record",
    "RecordKind",
    "RecordStore",
    "RetryEntry",
    "SideData",
    "catalog_url_for",
]
