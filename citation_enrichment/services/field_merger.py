from __future__ import annotations

import logging
from datetime import date
from typing import Callable, Dict, List, Optional

from citation_enrichment.core.models import CatalogResult, Record, RecordKind, SideData

logger = logging.getLogger(__name__)

FieldPolicy = Callable[[str], bool]

DEFAULT_VENUE_FIELD = "publicationTitle"
VENUE_FIELDS: Dict[RecordKind, str] = {
    RecordKind.JOURNAL_ARTICLE: "publicationTitle",
    RecordKind.CONFERENCE_PAPER: "proceedingsTitle",
    RecordKind.BOOK_SECTION: "bookTitle",
}


def venue_field_for(kind: RecordKind) -> str:
    return VENUE_FIELDS.get(kind, DEFAULT_VENUE_FIELD)


class FieldMerger:
    """Apply catalog results to records without destroying existing data.

    Side data (metrics, catalog id, fetch date) is always refreshed. Exported
    bibliographic fields are only written when overwriting is requested or the
    field is empty, and are never cleared.
    """

    def __init__(self, *, today: Callable[[], date] = date.today) -> None:
        self._today = today

    def apply_result(
        self,
        record: Record,
        result: CatalogResult,
        field_policy: FieldPolicy,
        overwrite: bool,
    ) -> List[str]:
        record.set_side_data(self._side_data(record, result, field_policy))

        written: List[str] = []
        updates = (
            ("DOI", "DOI", result.doi),
            ("abstract", "abstractNote", result.abstract),
            ("publicationDate", "date", result.publication_date),
            ("venue", venue_field_for(record.kind), result.venue),
            ("openAccessPdf", "url", result.open_access_url),
        )
        for policy_name, field_name, value in updates:
            if not field_policy(policy_name):
                continue
            if self._write_field(record, field_name, value, overwrite):
                written.append(field_name)

        record.save()
        logger.info(
            "Applied catalog data to %s",
            record.get_field("title") or record.key,
            extra={"paper_id": result.paper_id, "fields": written},
        )
        return written

    def _side_data(
        self, record: Record, result: CatalogResult, field_policy: FieldPolicy
    ) -> SideData:
        side_data = SideData(
            paper_id=result.paper_id or None,
            last_updated=self._today().isoformat(),
        )
        if field_policy("citationCount"):
            side_data.citation_count = result.citation_count
        if field_policy("influentialCitationCount"):
            side_data.influential_citation_count = result.influential_citation_count
        if field_policy("referenceCount"):
            side_data.reference_count = result.reference_count
        if field_policy("arXivId") and result.arxiv_id:
            side_data.arxiv_id = result.arxiv_id
        if field_policy("fieldsOfStudy") and result.fields_of_study:
            side_data.fields_of_study = list(result.fields_of_study)
        if side_data.paper_id is None:
            previous = record.get_side_data()
            side_data.paper_id = previous.paper_id if previous else None
        return side_data

    def _write_field(
        self, record: Record, field_name: str, value: Optional[str], overwrite: bool
    ) -> bool:
        if not value:
            return False

        current = record.get_field(field_name)
        if current and not overwrite:
            logger.debug("Skipped %s (field not empty): %s", field_name, current)
            return False

        record.set_field(field_name, value)
        logger.debug("Updated %s: %s", field_name, value)
        return True
