"""
Report API Routes

This module provides REST endpoints for stored reports:
- GET /reports/{report_id}: Get a report (counts as one access)
"""

from fastapi import APIRouter, HTTPException

from phenomatch.reference_store import get_reference_store
from phenomatch.report_assembler import ReportAssembler
from phenomatch_api.schemas import ReportResponse

# Create router
router = APIRouter(tags=["reports"])


@router.get("/reports/{report_id}", response_model=ReportResponse)
async def get_report(report_id: str):
    """
    Get a stored report.

    Every successful call increments the report's access counter.

    Args:
        report_id: The report's unique identifier.

    Raises:
        404: If the report is not found.
    """
    assembler = ReportAssembler(get_reference_store())
    report = assembler.record_access(report_id)

    if report is None:
        raise HTTPException(status_code=404, detail=f"Report {report_id} not found")

    return ReportResponse(**report)
