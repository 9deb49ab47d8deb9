"""API schema modules."""

from api.schemas.cases import (
    CaseSummary,
    HealthResponse,
    UploadRequest,
    UploadResponse,
)

__all__ = [
    "CaseSummary",
    "HealthResponse",
    "UploadRequest",
    "UploadResponse",
]
