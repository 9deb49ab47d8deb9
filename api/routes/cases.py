"""
Case API routes.

Upload, execute, inspect, trace and reset adverse-event cases. Pipeline
errors propagate to the handlers registered in api.main, which map them
to 400/404/409.
"""

from fastapi import APIRouter, Depends

from api.dependencies import get_registry
from api.schemas.cases import CaseSummary, UploadRequest, UploadResponse
from src.pipeline.ledger import verify_references
from src.pipeline.registry import CaseRegistry

router = APIRouter()


@router.post("/upload", response_model=UploadResponse, status_code=201)
async def upload_report(
    request: UploadRequest,
    registry: CaseRegistry = Depends(get_registry),
) -> UploadResponse:
    """Create a new case in `ready` from an uploaded report."""
    case = registry.upload(
        report_text=request.report_text,
        patient_id=request.patient_id,
        report_date=request.report_date,
        reporter=request.reporter,
        source_filename=request.source_filename,
        page_count=request.page_count,
    )
    return UploadResponse(case_id=case.case_id, status=case.status.value)


@router.get("/context/{case_id}")
async def get_context(
    case_id: str,
    registry: CaseRegistry = Depends(get_registry),
) -> dict:
    """Get the full case document. Poll `status` for progress."""
    return registry.fetch(case_id).model_dump(mode="json")


@router.delete("/context/{case_id}", status_code=204)
async def delete_context(
    case_id: str,
    registry: CaseRegistry = Depends(get_registry),
) -> None:
    """Delete a case and its document."""
    await registry.delete(case_id)


@router.post("/execute/{case_id}")
async def execute_case(
    case_id: str,
    registry: CaseRegistry = Depends(get_registry),
) -> dict:
    """
    Run the case to `complete` or `failed` and return the final document.

    A failed case is returned with 200; its `error` field carries the cause.
    """
    case = await registry.execute(case_id)
    return case.model_dump(mode="json")


@router.post("/reset/{case_id}")
async def reset_case(
    case_id: str,
    registry: CaseRegistry = Depends(get_registry),
) -> dict:
    """Clear layers and records, keeping the report."""
    case = await registry.reset(case_id)
    return case.model_dump(mode="json")


@router.get("/cases", response_model=list[CaseSummary])
async def list_cases(registry: CaseRegistry = Depends(get_registry)) -> list[CaseSummary]:
    """List all cases, oldest first."""
    return [
        CaseSummary(
            case_id=case.case_id,
            patient_id=case.patient_id,
            status=case.status.value,
            over_budget=case.over_budget,
            total_processing_time_ms=case.total_processing_time_ms,
            created_at=case.created_at,
            updated_at=case.updated_at,
        )
        for case in registry.list_cases()
    ]


@router.get("/trace/{case_id}/{item_id}")
async def trace_item(
    case_id: str,
    item_id: str,
    registry: CaseRegistry = Depends(get_registry),
) -> dict:
    """
    Provenance chain from an item back to its foundation events.

    Also lists any broken backward reference elsewhere in the document.
    """
    chain = registry.trace(case_id, item_id).to_dict()
    chain["reference_violations"] = verify_references(registry.fetch(case_id))
    return chain
