"""
Tests for deployment history and rollbacks.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from opzenix.core.errors import NotFoundError
from opzenix.core.models import AuditLog, Deployment
from opzenix.core.services.deployment_service import DeploymentService


@pytest.fixture
def service(runner) -> DeploymentService:
    return DeploymentService(runner=runner, rollback_delay=0)


async def deployment(version: str, status: str = "success", minutes_ago: int = 0):
    created = await Deployment.create(
        environment="production", version=version, status=status
    )
    # move creation time back so history has a stable order
    created.created_at = datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)
    await Deployment.filter(id=created.id).update(created_at=created.created_at)
    return created


class TestDeploymentQueries:
    """Test deployment listing."""

    async def test_list_newest_first(self, service):
        old = await deployment("v1", minutes_ago=10)
        new = await deployment("v2", minutes_ago=1)
        await Deployment.create(environment="staging", version="v9", status="success")

        listed = await service.list(environment="production")
        assert [d.id for d in listed] == [new.id, old.id]
        assert len(await service.list(limit=1)) == 1

    async def test_get(self, service):
        created = await deployment("v1")
        assert (await service.get(created.id)).version == "v1"

        with pytest.raises(NotFoundError):
            await service.get(uuid4())


class TestRollback:
    """Test rollbacks."""

    async def test_rollback_marks_replaced_deployment(self, service, runner):
        target = await deployment("v1", minutes_ago=30)
        middle = await deployment("v2", minutes_ago=20)
        current = await deployment("v3", minutes_ago=10)

        result = await service.rollback(
            target.id, "v1", "production", reason="bad release", requested_by="ops"
        )
        new = result["deployment"]
        assert new.status == "running"
        assert new.rollback_to == target.id
        assert new.notes == "bad release"
        assert new.deployed_by == "ops"
        assert result["message"] == "Rollback to v1 initiated"

        await runner.wait(f"rollback:{new.id}", timeout=5)

        assert (await Deployment.get(id=new.id)).status == "success"
        assert (await Deployment.get(id=current.id)).status == "rolled_back"
        assert (await Deployment.get(id=middle.id)).status == "success"
        assert (await Deployment.get(id=target.id)).status == "success"
        assert await AuditLog.exists(
            action="rollback_deployment", resource_id=str(new.id), user_id="ops"
        )

    async def test_default_notes(self, service, runner):
        target = await deployment("v1")

        result = await service.rollback(target.id, "v1", "production")

        assert result["deployment"].notes == "Rollback to v1"
        await runner.wait(f"rollback:{result['deployment'].id}", timeout=5)

    async def test_rollback_missing_deployment(self, service):
        with pytest.raises(NotFoundError):
            await service.rollback(uuid4(), "v1", "production")
