"""Health and statistics endpoints."""

from fastapi import APIRouter, Depends

from api.dependencies import get_registry
from api.schemas.cases import HealthResponse
from src.pipeline.registry import CaseRegistry

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(registry: CaseRegistry = Depends(get_registry)) -> HealthResponse:
    """Store and inference availability."""
    return HealthResponse(**await registry.health())


@router.get("/stats")
async def get_stats(registry: CaseRegistry = Depends(get_registry)) -> dict:
    """Per-stage inference latencies and over-budget case count."""
    return registry.stats()


@router.get("/")
async def root():
    """API root."""
    return {
        "name": "Adverse Event Safety Pipeline API",
        "version": "1.0.0",
        "docs": "/docs",
    }
