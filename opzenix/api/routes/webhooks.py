"""
Webhook endpoints for CI systems and GitHub.
"""

import json
from typing import Any, Dict, Optional

from fastapi import Body, Header, Request
from fastapi.responses import JSONResponse

from ...core.errors import ValidationFailedError
from ...core.services.artifact_service import ArtifactService
from ...core.services.github_service import GitHubWebhookService
from ..versioning import create_versioned_router

router = create_versioned_router(prefix="/webhooks", tags=["webhooks"])


@router.post("/artifacts")
async def artifact_webhook(
    payload: Dict[str, Any] = Body(...),
    x_webhook_secret: Optional[str] = Header(None),
) -> JSONResponse:
    """Register an artifact pushed by CI; duplicates answer 200."""
    service = ArtifactService()
    result = await service.register(payload, secret=x_webhook_secret)
    return JSONResponse(
        status_code=201 if result["status"] == "created" else 200,
        content={**result, "artifact_id": str(result["artifact_id"])},
    )


@router.post("/github")
async def github_webhook(
    request: Request,
    x_github_event: Optional[str] = Header(None),
    x_hub_signature_256: Optional[str] = Header(None),
) -> Dict[str, Any]:
    """Handle push, workflow_run and workflow_job deliveries."""
    body = await request.body()
    service = GitHubWebhookService()
    service.verify_signature(body, x_hub_signature_256)
    try:
        payload = json.loads(body)
    except ValueError as e:
        raise ValidationFailedError("Webhook body must be valid JSON") from e
    if not isinstance(payload, dict):
        raise ValidationFailedError("Webhook body must be a JSON object")
    result = await service.handle(x_github_event, payload)
    return {"success": True, **result}
