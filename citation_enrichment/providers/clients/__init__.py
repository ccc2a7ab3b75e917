"""HTTP clients used by the enrichment service layer."""

from .base import (
    BaseHttpClient,
    ClientError,
    ForbiddenError,
    NotFoundError,
    RateLimitedError,
    RequestRejectedError,
    TransportError,
    UnauthorizedError,
    UpstreamError,
)
from .semanticscholar import SemanticScholarClient, build_fields_param, classify_error

__all__ = [
    "BaseHttpClient",
    "ClientError",
    "ForbiddenError",
    "NotFoundError",
    "RateLimitedError",
    "RequestRejectedError",
    "SemanticScholarClient",
    "TransportError",
    "UnauthorizedError",
    "UpstreamError",
    "build_fields_param",
    "classify_error",
]
