"""
Artifact API endpoints: listing plus SBOM and scan ingestion.
"""

from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from fastapi import Query, status
from pydantic import BaseModel

from ...core.database.schemas import ArtifactResponse
from ...core.services.artifact_service import ArtifactService
from ...core.services.security_service import SecurityService
from ..versioning import create_versioned_router

router = create_versioned_router(prefix="/artifacts", tags=["artifacts"])


class SbomUploadRequest(BaseModel):
    """SBOM document for an artifact."""

    sbom_data: Optional[Dict[str, Any]] = None
    format: str = "spdx"
    generator: str = "syft"
    sbom_url: Optional[str] = None


class ScanUploadRequest(BaseModel):
    """Trivy results for an artifact."""

    scan_results: Union[Dict[str, Any], List[Dict[str, Any]], None] = None
    image_ref: Optional[str] = None
    scan_type: str = "image"
    scanner: str = "trivy"


@router.get("", response_model=List[ArtifactResponse])
async def list_artifacts(
    execution_id: Optional[UUID] = Query(None, description="Filter by execution"),
    limit: int = Query(50, ge=1, le=500),
) -> List[ArtifactResponse]:
    """List artifacts, newest first."""
    service = ArtifactService()
    return await service.list(
        execution_id=str(execution_id) if execution_id else None, limit=limit
    )


@router.post("/{artifact_id}/sbom", status_code=status.HTTP_201_CREATED)
async def upload_sbom(artifact_id: UUID, request: SbomUploadRequest) -> Dict[str, Any]:
    """Store an SPDX or CycloneDX SBOM for an artifact."""
    service = SecurityService()
    return await service.ingest_sbom(
        artifact_id,
        sbom_data=request.sbom_data,
        sbom_format=request.format,
        generator=request.generator,
        sbom_url=request.sbom_url,
    )


@router.post("/{artifact_id}/scans", status_code=status.HTTP_201_CREATED)
async def upload_scan(artifact_id: UUID, request: ScanUploadRequest) -> Dict[str, Any]:
    """Store Trivy vulnerability scan results for an artifact."""
    service = SecurityService()
    return await service.ingest_scan(
        artifact_id,
        scan_results=request.scan_results,
        image_ref=request.image_ref,
        scan_type=request.scan_type,
        scanner=request.scanner,
    )
