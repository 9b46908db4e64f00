"""
CI evidence and test report endpoints.
"""

from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from fastapi import Body, status
from pydantic import BaseModel

from ...core.database.schemas import CIEvidenceResponse
from ...core.services.evidence_service import EvidenceService
from ..versioning import create_versioned_router

router = create_versioned_router(tags=["evidence"])


class TestReportRequest(BaseModel):
    """JUnit report upload."""

    __test__ = False

    execution_id: Optional[str] = None
    report_xml: Optional[str] = None
    report_url: Optional[str] = None
    test_type: str = "unit"
    coverage_percent: Optional[float] = None


@router.post("/evidence")
async def record_evidence(
    payload: Union[List[Dict[str, Any]], Dict[str, Any]] = Body(...),
) -> Dict[str, Any]:
    """Record one CI evidence item or a list of them."""
    service = EvidenceService()
    result = await service.record(payload)
    return {"success": True, **result}


@router.get(
    "/executions/{execution_id}/evidence", response_model=List[CIEvidenceResponse]
)
async def list_evidence(execution_id: UUID) -> List[CIEvidenceResponse]:
    """CI evidence of an execution in step order."""
    service = EvidenceService()
    return await service.list(execution_id)


@router.post("/test-results", status_code=status.HTTP_201_CREATED)
async def upload_test_results(request: TestReportRequest) -> Dict[str, Any]:
    """Parse and store a JUnit XML report."""
    service = EvidenceService()
    result = await service.parse_test_results(
        request.execution_id,
        request.report_xml,
        report_url=request.report_url,
        test_type=request.test_type,
        coverage_percent=request.coverage_percent,
    )
    return {"success": True, **result}
