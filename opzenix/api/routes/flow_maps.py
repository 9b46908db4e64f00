"""
Flow map endpoint.
"""

from uuid import UUID

from fastapi import Response

from ...core.services.flow_map_service import FlowMap, FlowMapService
from ..versioning import create_versioned_router

router = create_versioned_router(prefix="/flow-maps", tags=["flow-maps"])


@router.get("/{execution_id}", response_model=FlowMap)
async def get_flow_map(execution_id: UUID, response: Response) -> FlowMap:
    """
    Lane based flow map of an execution.

    Maps of finished executions do not change and may be cached.
    """
    service = FlowMapService()
    flow_map = await service.build(execution_id)
    response.headers["Cache-Control"] = (
        "public, max-age=3600" if flow_map.meta.immutable else "no-cache"
    )
    return flow_map
