"""
Supply-chain report parsers: SBOM documents, Trivy scans and JUnit reports.
"""

from .junit import JUnitParseError, TestReport, parse_junit
from .sbom import SbomPackage, SbomSummary, parse_sbom
from .trivy import CVEDetail, ScanSummary, parse_trivy

__all__ = [
    "JUnitParseError",
    "TestReport",
    "parse_junit",
    "SbomPackage",
    "SbomSummary",
    "parse_sbom",
    "CVEDetail",
    "ScanSummary",
    "parse_trivy",
]
