"""Service layer for the citation enrichment package."""

from .fetch_orchestrator import FetchOrchestrator, FetchReport, first_decisive
from .field_merger import FieldMerger, venue_field_for
from .retry_scheduler import RetryScheduler

__all__ = [
    "FetchOrchestrator",
    "FetchReport",
    "FieldMerger",
    "RetryScheduler",
    "first_decisive",
    "venue_field_for",
]
