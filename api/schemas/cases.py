"""Case API schemas."""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field


class UploadRequest(BaseModel):
    """Report text plus intake metadata (PDF text already extracted upstream)."""
    report_text: str = Field(..., min_length=1, description="Narrative adverse-event report")
    patient_id: str = Field(..., min_length=1)
    report_date: Optional[date] = None
    reporter: Optional[str] = Field(default=None, description="e.g., physician, pharmacist, patient")
    source_filename: Optional[str] = Field(default=None, description="Original upload, if a file")
    page_count: Optional[int] = Field(default=None, ge=0)


class UploadResponse(BaseModel):
    """Identifier of the newly created case."""
    case_id: str
    status: str


class CaseSummary(BaseModel):
    """One row of the case listing."""
    case_id: str
    patient_id: str
    status: str
    over_budget: bool
    total_processing_time_ms: float
    created_at: datetime
    updated_at: datetime


class HealthResponse(BaseModel):
    store: str
    inference: str
