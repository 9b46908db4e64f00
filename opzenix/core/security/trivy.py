"""
Trivy JSON report ingestion.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

DESCRIPTION_LIMIT = 500
HIGH_WARNING_THRESHOLD = 5

SEVERITIES = ("CRITICAL", "HIGH", "MEDIUM", "LOW")


class CVEDetail(BaseModel):
    """One vulnerability found in a scanned target."""

    id: str
    severity: str
    package: Optional[str] = None
    version: Optional[str] = None
    fixed_version: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    published_date: Optional[str] = None
    cvss: Optional[float] = None


class ScanSummary(BaseModel):
    """Severity counts and scan verdict."""

    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    cves: List[CVEDetail] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return self.critical + self.high + self.medium + self.low

    @property
    def status(self) -> str:
        """``failed`` on any critical, ``warning`` on too many highs."""
        if self.critical > 0:
            return "failed"
        if self.high > HIGH_WARNING_THRESHOLD:
            return "warning"
        return "completed"

    @property
    def blocked(self) -> bool:
        return self.critical > 0


def _cvss_score(vulnerability: Dict[str, Any]) -> Optional[float]:
    nvd = (vulnerability.get("CVSS") or {}).get("nvd") or {}
    return nvd.get("V3Score")


def parse_trivy(
    scan_results: Union[Dict[str, Any], List[Dict[str, Any]], None]
) -> ScanSummary:
    """
    Count and collect vulnerabilities from Trivy results.

    Args:
        scan_results: One Trivy result object or a list of them

    Returns:
        Severity counts and CVE details
    """
    summary = ScanSummary()
    if not scan_results:
        return summary

    results = scan_results if isinstance(scan_results, list) else [scan_results]
    for result in results:
        for vulnerability in result.get("Vulnerabilities") or []:
            severity = str(vulnerability.get("Severity", "UNKNOWN")).upper()
            if severity == "CRITICAL":
                summary.critical += 1
            elif severity == "HIGH":
                summary.high += 1
            elif severity == "MEDIUM":
                summary.medium += 1
            elif severity == "LOW":
                summary.low += 1

            description = vulnerability.get("Description")
            summary.cves.append(
                CVEDetail(
                    id=vulnerability.get("VulnerabilityID", ""),
                    severity=severity,
                    package=vulnerability.get("PkgName"),
                    version=vulnerability.get("InstalledVersion"),
                    fixed_version=vulnerability.get("FixedVersion"),
                    title=vulnerability.get("Title"),
                    description=(
                        description[:DESCRIPTION_LIMIT] if description else None
                    ),
                    published_date=vulnerability.get("PublishedDate"),
                    cvss=_cvss_score(vulnerability),
                )
            )

    return summary
