"""
API versioning strategy and utilities.

Routes are versioned by URL path; every router is mounted below
``/api/<version>``.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter

from .models import ErrorResponse


class APIVersion(str, Enum):
    """Supported API versions."""

    V1 = "v1"


ERROR_RESPONSES: Dict[Union[int, str], Dict[str, Any]] = {
    status_code: {"model": ErrorResponse} for status_code in (400, 401, 404, 409, 422)
}


class VersionedAPIRouter(APIRouter):
    """Router that prefixes its routes with the API version."""

    def __init__(
        self,
        version: APIVersion = APIVersion.V1,
        prefix: str = "",
        tags: Optional[List[Union[str, Enum]]] = None,
        **kwargs: Any,
    ) -> None:
        """Initialize versioned router."""
        versioned_prefix = f"/api/{version.value}"
        if prefix:
            versioned_prefix += prefix

        kwargs.setdefault("responses", ERROR_RESPONSES)
        super().__init__(prefix=versioned_prefix, tags=tags or [], **kwargs)
        self.version = version


def get_version_info() -> Dict[str, Any]:
    """
    Get current API version information.

    Returns:
        Dictionary with version information
    """
    return {
        "current_version": APIVersion.V1.value,
        "supported_versions": [version.value for version in APIVersion],
        "deprecated_versions": [],
        "versioning_strategy": "URL path versioning",
    }


def create_versioned_router(
    version: APIVersion = APIVersion.V1,
    prefix: str = "",
    tags: Optional[List[Union[str, Enum]]] = None,
    **kwargs: Any,
) -> VersionedAPIRouter:
    """
    Create a versioned API router.

    Args:
        version: API version
        prefix: Router prefix (added after the version prefix)
        tags: OpenAPI tags
        **kwargs: Additional router arguments

    Returns:
        Versioned API router
    """
    return VersionedAPIRouter(version=version, prefix=prefix, tags=tags, **kwargs)
