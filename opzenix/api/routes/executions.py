"""
Execution API endpoints.

Start pipelines, follow their nodes and logs, cancel them and rerun them
from checkpoints.
"""

from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import Query, status

from ...core.database.schemas import (
    CancelExecutionRequest,
    CheckpointResponse,
    ExecutionNodeResponse,
    ExecutionResponse,
    PipelineExecuteRequest,
    TestExecutionRequest,
)
from ...core.services.execution_service import ExecutionService
from ..versioning import create_versioned_router

router = create_versioned_router(prefix="/executions", tags=["executions"])
checkpoints_router = create_versioned_router(prefix="/checkpoints", tags=["executions"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def execute_pipeline(request: PipelineExecuteRequest) -> Dict[str, Any]:
    """Create an execution for a pipeline and start processing it."""
    service = ExecutionService()
    return await service.start_pipeline(request)


@router.post(
    "/test", response_model=ExecutionResponse, status_code=status.HTTP_201_CREATED
)
async def create_test_execution(
    request: Optional[TestExecutionRequest] = None,
) -> ExecutionResponse:
    """Create and run the built-in demo pipeline."""
    request = request or TestExecutionRequest()
    service = ExecutionService()
    return await service.create_test_execution(
        name=request.name,
        environment=request.environment,
        branch=request.branch,
    )


@router.get("", response_model=List[ExecutionResponse])
async def list_executions(
    status: Optional[str] = Query(None, description="Filter by status"),
    environment: Optional[str] = Query(None, description="Filter by environment"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> List[ExecutionResponse]:
    """List executions, newest first."""
    service = ExecutionService()
    return await service.list(
        status=status, environment=environment, limit=limit, offset=offset
    )


@router.get("/{execution_id}", response_model=ExecutionResponse)
async def get_execution(execution_id: UUID) -> ExecutionResponse:
    """Get execution by ID."""
    service = ExecutionService()
    return await service.get(execution_id)


@router.get("/{execution_id}/nodes", response_model=List[ExecutionNodeResponse])
async def get_execution_nodes(execution_id: UUID) -> List[ExecutionNodeResponse]:
    """Get the node statuses of an execution."""
    service = ExecutionService()
    return await service.get_nodes(execution_id)


@router.get("/{execution_id}/logs")
async def get_execution_logs(
    execution_id: UUID,
    node_id: Optional[str] = Query(None, description="Only logs of this node"),
    level: Optional[str] = Query(None, description="Filter by log level"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> Dict[str, Any]:
    """Get execution logs, grouped by node unless a node is given."""
    service = ExecutionService()
    return await service.fetch_logs(
        execution_id, node_id=node_id, level=level, limit=limit, offset=offset
    )


@router.post("/{execution_id}/cancel")
async def cancel_execution(
    execution_id: UUID, request: Optional[CancelExecutionRequest] = None
) -> Dict[str, Any]:
    """Cancel a running or paused execution."""
    request = request or CancelExecutionRequest()
    service = ExecutionService()
    return await service.cancel(
        execution_id, reason=request.reason, cancelled_by=request.cancelled_by
    )


@router.get("/{execution_id}/checkpoints", response_model=List[CheckpointResponse])
async def list_checkpoints(execution_id: UUID) -> List[CheckpointResponse]:
    """Get the checkpoints of an execution."""
    service = ExecutionService()
    return await service.list_checkpoints(execution_id)


@checkpoints_router.post("/{checkpoint_id}/rerun", status_code=status.HTTP_201_CREATED)
async def rerun_from_checkpoint(checkpoint_id: UUID) -> Dict[str, Any]:
    """Start a new execution from a checkpoint."""
    service = ExecutionService()
    return await service.rerun_from_checkpoint(checkpoint_id)
