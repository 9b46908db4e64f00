"""
SBOM parsing for SPDX and CycloneDX JSON documents.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

UNKNOWN_LICENSE = "UNKNOWN"
UNKNOWN_VERSION = "unknown"

SUPPORTED_FORMATS = ("spdx", "cyclonedx")


class SbomPackage(BaseModel):
    """A package listed in an SBOM."""

    name: str
    version: str = UNKNOWN_VERSION
    type: str = "library"
    license: str = UNKNOWN_LICENSE
    purl: Optional[str] = None


class SbomSummary(BaseModel):
    """Packages of an SBOM plus how many use each license."""

    packages: List[SbomPackage] = Field(default_factory=list)
    license_summary: Dict[str, int] = Field(default_factory=dict)

    @property
    def package_count(self) -> int:
        return len(self.packages)

    @property
    def license_types(self) -> int:
        return len(self.license_summary)


def _spdx_purl(package: Dict[str, Any]) -> Optional[str]:
    for ref in package.get("externalRefs") or []:
        locator = ref.get("referenceLocator")
        if isinstance(locator, str) and locator.startswith("pkg:"):
            return locator
    return None


def _cyclonedx_license(component: Dict[str, Any]) -> str:
    licenses = component.get("licenses") or []
    if licenses:
        license_id = (licenses[0].get("license") or {}).get("id")
        if license_id:
            return license_id
    return UNKNOWN_LICENSE


def parse_spdx(document: Dict[str, Any]) -> List[SbomPackage]:
    """Packages from an SPDX document's ``packages`` array."""
    return [
        SbomPackage(
            name=package.get("name", ""),
            version=package.get("versionInfo") or UNKNOWN_VERSION,
            type="library",
            license=package.get("licenseConcluded") or UNKNOWN_LICENSE,
            purl=_spdx_purl(package),
        )
        for package in document.get("packages") or []
    ]


def parse_cyclonedx(document: Dict[str, Any]) -> List[SbomPackage]:
    """Packages from a CycloneDX document's ``components`` array."""
    return [
        SbomPackage(
            name=component.get("name", ""),
            version=component.get("version") or UNKNOWN_VERSION,
            type=component.get("type") or "library",
            license=_cyclonedx_license(component),
            purl=component.get("purl"),
        )
        for component in document.get("components") or []
    ]


def parse_sbom(
    document: Optional[Dict[str, Any]], sbom_format: str = "spdx"
) -> SbomSummary:
    """
    Parse an SBOM document in the given format.

    An empty document, or one in a format other than the one named, yields no
    packages.

    Args:
        document: Decoded SBOM JSON
        sbom_format: ``spdx`` or ``cyclonedx``

    Returns:
        Packages and per-license package counts
    """
    if not document:
        return SbomSummary()

    if sbom_format == "spdx":
        packages = parse_spdx(document)
    elif sbom_format == "cyclonedx":
        packages = parse_cyclonedx(document)
    else:
        packages = []

    license_summary: Dict[str, int] = {}
    for package in packages:
        license_summary[package.license] = license_summary.get(package.license, 0) + 1

    return SbomSummary(packages=packages, license_summary=license_summary)
