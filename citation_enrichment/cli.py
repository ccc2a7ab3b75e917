from __future__ import annotations

import argparse
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from citation_enrichment.api import CitationEnricher
from citation_enrichment.core.preferences import (
    FIELD_DEFINITIONS,
    SEARCH_MODES,
    InMemoryPreferences,
)
from citation_enrichment.core.settings import EnrichmentSettings
from citation_enrichment.exceptions import EnrichmentError
from citation_enrichment.services.fetch_orchestrator import FetchReport
from citation_enrichment.stores.json_store import JsonRecordStore
from citation_enrichment.stores.memory import LibraryRecord


def _print_json(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


def _build_preferences(args: argparse.Namespace) -> InMemoryPreferences:
    values: Dict[str, Any] = {
        "search_mode": args.search_mode,
        "overwrite_existing_fields": args.overwrite,
    }
    for name in args.fields or []:
        values[f"fetch.{name}"] = True
    return InMemoryPreferences(values)


def _build_enricher(args: argparse.Namespace, store: JsonRecordStore) -> CitationEnricher:
    return CitationEnricher(
        EnrichmentSettings(),
        preferences=_build_preferences(args),
        store=store,
    )


def _serialize_report(report: FetchReport) -> Dict[str, Any]:
    return {
        "found": report.found,
        "not_found": report.not_found,
        "queued": report.queued,
        "failed": report.failed,
        "via_batch": report.via_batch,
        "outcomes": {
            str(key): type(outcome).__name__ for key, outcome in report.outcomes.items()
        },
        "summary": report.summary(),
    }


def _serialize_record(record: LibraryRecord, enricher: CitationEnricher) -> Dict[str, Any]:
    side_data = record.get_side_data()
    return {
        "key": record.key,
        "title": record.get_field("title"),
        "item_type": record.item_type,
        "side_data": side_data.to_dict() if side_data else None,
        "catalog_url": enricher.catalog_url(record),
    }


def _select(store: JsonRecordStore, keys: Optional[List[str]]) -> List[LibraryRecord]:
    if not keys:
        return store.list_all_records()
    missing = [key for key in keys if store.get(key) is None]
    if missing:
        raise EnrichmentError(f"Unknown record keys: {', '.join(missing)}")
    return [store.get(key) for key in keys]  # type: ignore[misc]


def handle_fetch(args: argparse.Namespace) -> None:
    store = JsonRecordStore(args.store)
    enricher = _build_enricher(args, store)
    report = enricher.fetch_records(_select(store, args.keys), wait=True)
    _print_json(_serialize_report(report))


def handle_update(args: argparse.Namespace) -> None:
    store = JsonRecordStore(args.store)
    enricher = _build_enricher(args, store)
    report = enricher.update_library(args.scope, force=True, wait=True)
    _print_json(_serialize_report(report) if report else None)


def handle_show(args: argparse.Namespace) -> None:
    store = JsonRecordStore(args.store)
    enricher = _build_enricher(args, store)
    _print_json([_serialize_record(record, enricher) for record in _select(store, args.keys)])


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Citation enrichment CLI")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--search-mode",
        choices=SEARCH_MODES,
        default="title",
        help="Fall back to exact title search when identifiers fail",
    )
    parser.add_argument(
        "--overwrite",
        action="store_true",
        help="Overwrite non-empty bibliographic fields",
    )
    parser.add_argument(
        "--field",
        dest="fields",
        action="append",
        choices=sorted(FIELD_DEFINITIONS),
        help="Enable fetching an additional field (repeatable)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch_parser = subparsers.add_parser("fetch", help="Fetch catalog data for records")
    fetch_parser.add_argument("store", help="Path to the JSON record store")
    fetch_parser.add_argument("keys", nargs="*", help="Record keys (default: all)")
    fetch_parser.set_defaults(func=handle_fetch)

    update_parser = subparsers.add_parser("update", help="Refresh the whole library")
    update_parser.add_argument("store", help="Path to the JSON record store")
    update_parser.add_argument("--scope", help="Only refresh records of this library")
    update_parser.set_defaults(func=handle_update)

    show_parser = subparsers.add_parser("show", help="Show stored citation data")
    show_parser.add_argument("store", help="Path to the JSON record store")
    show_parser.add_argument("keys", nargs="*", help="Record keys (default: all)")
    show_parser.set_defaults(func=handle_show)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        args.func(args)
    except EnrichmentError as exc:
        parser.exit(1, f"error: {exc}\n")


if __name__ == "__main__":
    main()
