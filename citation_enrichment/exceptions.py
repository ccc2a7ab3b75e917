"""Custom exception hierarchy for the citation enrichment engine."""


class EnrichmentError(Exception):
    """Base exception for citation enrichment errors."""


class ConfigError(EnrichmentError):
    """Raised when configuration or preference values are invalid."""


class RecordStoreError(EnrichmentError):
    """Raised when a record store cannot be read or written."""
