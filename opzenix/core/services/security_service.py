"""
Supply-chain evidence for artifacts: SBOMs and vulnerability scans.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from ..database.schemas import SbomEntryResponse, VulnerabilityScanResponse
from ..errors import NotFoundError, ValidationFailedError
from ..logging import get_logger
from ..models import Artifact, SbomEntry, VulnerabilityScan
from ..security.sbom import parse_sbom
from ..security.trivy import parse_trivy
from .evidence_service import EvidenceService

logger = get_logger(__name__)

MAX_STORED_PACKAGES = 500
MAX_STORED_CVES = 100

SBOM_STEP_ORDER = 6
SCAN_STEP_ORDER = 7


class SecurityService:
    """Stores SBOMs and scan results and reports them as CI evidence."""

    def __init__(self, evidence_service: Optional[EvidenceService] = None) -> None:
        self.evidence_service = evidence_service or EvidenceService()

    async def _get_artifact(self, artifact_id: Optional[Any]) -> Artifact:
        if not artifact_id:
            raise ValidationFailedError(
                "artifact_id is required", {"required": ["artifact_id"]}
            )
        artifact = await Artifact.get_or_none(id=artifact_id)
        if artifact is None:
            raise NotFoundError("Artifact", artifact_id)
        return artifact

    async def ingest_sbom(
        self,
        artifact_id: Optional[Any],
        sbom_data: Optional[Dict[str, Any]] = None,
        sbom_format: str = "spdx",
        generator: str = "syft",
        sbom_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Parse and store an SBOM for an artifact.

        Only the first packages are stored; the full package count is kept in
        ``dependencies_count``.

        Raises:
            ValidationFailedError: If no artifact id is given
            NotFoundError: If the artifact does not exist
        """
        artifact = await self._get_artifact(artifact_id)
        summary = parse_sbom(sbom_data, sbom_format)
        logger.info(
            "Parsed SBOM",
            artifact_id=str(artifact.id),
            format=sbom_format,
            generator=generator,
            package_count=summary.package_count,
        )

        entry = await SbomEntry.create(
            artifact_id=artifact.id,
            format=sbom_format,
            generator=generator,
            packages=[p.model_dump() for p in summary.packages[:MAX_STORED_PACKAGES]],
            dependencies_count=summary.package_count,
            license_summary=summary.license_summary,
            sbom_url=sbom_url,
        )

        if artifact.execution_id:
            await self.evidence_service.upsert(
                {
                    "execution_id": artifact.execution_id,
                    "step_name": "Generate SBOM",
                    "step_type": "build",
                    "step_order": SBOM_STEP_ORDER,
                    "status": "passed",
                    "summary": f"{summary.package_count} packages cataloged",
                    "details": {
                        "format": sbom_format,
                        "generator": generator,
                        "packageCount": summary.package_count,
                        "licenseTypes": summary.license_types,
                    },
                }
            )
            await self.evidence_service.update_progress(artifact.execution_id)

        return {
            "data": SbomEntryResponse.model_validate(entry),
            "summary": {
                "packageCount": summary.package_count,
                "licenseTypes": summary.license_types,
                "licenses": summary.license_summary,
                "format": sbom_format,
                "generator": generator,
            },
        }

    async def ingest_scan(
        self,
        artifact_id: Optional[Any],
        scan_results: Union[Dict[str, Any], List[Dict[str, Any]], None] = None,
        image_ref: Optional[str] = None,
        scan_type: str = "image",
        scanner: str = "trivy",
    ) -> Dict[str, Any]:
        """
        Store Trivy scan results for an artifact.

        A scan with any critical finding fails and blocks the artifact.

        Raises:
            ValidationFailedError: If no artifact id is given
            NotFoundError: If the artifact does not exist
        """
        artifact = await self._get_artifact(artifact_id)
        summary = parse_trivy(scan_results)
        logger.info(
            "Parsed vulnerability scan",
            artifact_id=str(artifact.id),
            image_ref=image_ref,
            critical=summary.critical,
            high=summary.high,
            medium=summary.medium,
            low=summary.low,
        )

        scan = await VulnerabilityScan.create(
            artifact_id=artifact.id,
            scan_type=scan_type,
            scanner=scanner,
            scan_status=summary.status,
            total_issues=summary.total,
            critical=summary.critical,
            high=summary.high,
            medium=summary.medium,
            low=summary.low,
            cve_details=[c.model_dump() for c in summary.cves[:MAX_STORED_CVES]],
            scanned_at=datetime.now(timezone.utc),
        )

        if artifact.execution_id:
            await self.evidence_service.upsert(
                {
                    "execution_id": artifact.execution_id,
                    "step_name": "Container Image Scan",
                    "step_type": "scan",
                    "step_order": SCAN_STEP_ORDER,
                    "status": "failed" if summary.status == "failed" else "passed",
                    "summary": (
                        f"{summary.total} vulnerabilities "
                        f"({summary.critical} critical, {summary.high} high)"
                    ),
                    "details": {
                        "critical": summary.critical,
                        "high": summary.high,
                        "medium": summary.medium,
                        "low": summary.low,
                        "total": summary.total,
                        "imageRef": image_ref,
                        "scanner": scanner,
                    },
                }
            )
            await self.evidence_service.update_progress(artifact.execution_id)

        if summary.blocked:
            logger.warning(
                "Artifact blocked by critical vulnerabilities",
                artifact_id=str(artifact.id),
                critical=summary.critical,
            )

        return {
            "data": VulnerabilityScanResponse.model_validate(scan),
            "summary": {
                "total": summary.total,
                "critical": summary.critical,
                "high": summary.high,
                "medium": summary.medium,
                "low": summary.low,
                "status": summary.status,
                "blocked": summary.blocked,
            },
        }
