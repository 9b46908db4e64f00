"""
GitHub webhook handling.

Push events create executions subject to branch and environment governance:
branches must map to an environment, locked environments hold the execution
behind a governance gate. Workflow run and job events mirror GitHub Actions
progress onto executions and their nodes.
"""

import hashlib
import hmac
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from ..config import get_config
from ..database.schemas import BranchMappingResponse, ExecutionResponse
from ..errors import WebhookAuthenticationError
from ..executions.lifecycle import (
    ExecutionStatus,
    GovernanceStatus,
    NodeStatus,
    execution_machine,
    node_machine,
)
from ..logging import get_logger, log_execution_event
from ..models import (
    ApprovalRequest,
    BranchMapping,
    Checkpoint,
    EnvironmentLock,
    Execution,
    ExecutionLog,
    ExecutionNode,
)
from .approval_service import GOVERNANCE_GATE_NODE
from .audit_service import AuditService

logger = get_logger(__name__)

SIGNATURE_PREFIX = "sha256="
UUID_PATTERN = r"[0-9a-fA-F]{8}-(?:[0-9a-fA-F]{4}-){3}[0-9a-fA-F]{12}"
JOB_NAME_PATTERN = re.compile(rf"opzenix-({UUID_PATTERN})-(.+)")
RUN_NAME_PATTERN = re.compile(rf"opzenix-({UUID_PATTERN})")

# Environments that need a second approver
DUAL_APPROVAL_ENVIRONMENTS = ("Prod",)


def branch_matches_pattern(branch: str, pattern: str) -> bool:
    """
    Match a branch against a mapping pattern.

    Supports exact names, ``prefix/*`` and glob patterns with ``*`` and ``?``.
    """
    if pattern == branch:
        return True
    if pattern.endswith("/*"):
        return branch.startswith(pattern[:-1])
    regex = "".join(
        ".*" if char == "*" else "." if char == "?" else re.escape(char)
        for char in pattern
    )
    return re.fullmatch(regex, branch) is not None


def map_github_status(status: Optional[str], conclusion: Optional[str]) -> str:
    """Map a GitHub Actions status and conclusion to an execution/node status."""
    if status == "in_progress":
        return "running"
    if status == "completed":
        if conclusion == "success":
            return "success"
        if conclusion in ("failure", "timed_out", "cancelled"):
            return "failed"
    return "idle"


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class GitHubWebhookService:
    """Turns GitHub webhook deliveries into governed executions."""

    def __init__(
        self,
        audit_service: Optional[AuditService] = None,
        webhook_secret: Optional[str] = None,
    ) -> None:
        self.audit_service = audit_service or AuditService()
        self._webhook_secret = webhook_secret

    @property
    def webhook_secret(self) -> Optional[str]:
        if self._webhook_secret is not None:
            return self._webhook_secret
        return get_config().webhooks.github_secret

    def verify_signature(self, body: bytes, signature: Optional[str]) -> None:
        """
        Verify the ``x-hub-signature-256`` header of a delivery.

        No check is made when no secret is configured.

        Raises:
            WebhookAuthenticationError: If the signature is missing or wrong
        """
        secret = self.webhook_secret
        if not secret:
            return
        expected = SIGNATURE_PREFIX + hmac.new(
            secret.encode(), body, hashlib.sha256
        ).hexdigest()
        if not signature or not hmac.compare_digest(signature, expected):
            logger.warning("Invalid GitHub webhook signature")
            raise WebhookAuthenticationError("Invalid signature")

    async def handle(
        self, event: Optional[str], payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Dispatch a delivery by its ``x-github-event`` header."""
        logger.info("GitHub webhook received", github_event=event)
        executions: List[Execution] = []
        if event == "push":
            executions = await self.handle_push(payload)
        elif event == "workflow_run":
            await self.handle_workflow_run(payload)
        elif event == "workflow_job":
            await self.handle_workflow_job(payload)

        return {
            "event": event,
            "executions": [ExecutionResponse.model_validate(e) for e in executions],
        }

    async def handle_push(self, payload: Dict[str, Any]) -> List[Execution]:
        """
        Create executions for a push according to the repository's mappings.

        Returns:
            The created executions, one per matched environment or a single
            blocked execution when no mapping matches
        """
        repo = payload.get("repository") or {}
        owner = repo.get("owner") or {}
        repository = f"{owner.get('login') or owner.get('name')}/{repo.get('name')}"
        branch = (payload.get("ref") or "").replace("refs/heads/", "", 1)
        commit_sha = payload.get("after") or ""
        commits = payload.get("commits") or []
        head_commit = payload.get("head_commit") or {}
        message = head_commit.get("message") or (
            commits[0].get("message") if commits else None
        ) or "No message"
        pusher = (payload.get("pusher") or {}).get("name")

        logger.info(
            "Push received",
            repository=repository,
            branch=branch,
            commit=commit_sha[:7],
        )

        mappings = await BranchMapping.filter(repository=repository)
        if not mappings:
            logger.info("No branch mappings for repository", repository=repository)
            return []

        push = {
            "name": f"Push: {message[:50]}",
            "branch": branch,
            "commit_hash": commit_sha,
            "repository": repository,
            "pusher": pusher,
        }

        matched = [
            m for m in mappings if branch_matches_pattern(branch, m.branch_pattern)
        ]
        if not matched:
            logger.info("Branch is not configured, blocking execution", branch=branch)
            execution = await self._create_blocked(
                push,
                None,
                f"Branch '{branch}' is not allowed for deployment. "
                "No matching branch pattern configured.",
            )
            return [execution]

        executions = []
        for mapping in matched:
            if not mapping.is_deployable:
                executions.append(
                    await self._create_blocked(
                        push,
                        mapping.environment,
                        f"Branch '{branch}' is marked as non-deployable to "
                        f"{mapping.environment}.",
                    )
                )
                continue

            lock = await EnvironmentLock.get_or_none(environment=mapping.environment)
            # No lock row means the environment is locked
            is_locked = lock.is_locked if lock is not None else True
            if is_locked:
                execution = await self._create_paused(push, mapping.environment, lock)
                executions.append(execution)
            else:
                executions.append(await self._create_allowed(push, mapping.environment))
        return executions

    async def _create_blocked(
        self, push: Dict[str, Any], environment: Optional[str], reason: str
    ) -> Execution:
        execution = await Execution.create(
            name=push["name"],
            branch=push["branch"],
            commit_hash=push["commit_hash"],
            environment=environment or "unknown",
            status=ExecutionStatus.FAILED.value,
            governance_status=GovernanceStatus.BLOCKED.value,
            blocked_reason=reason,
            completed_at=datetime.now(timezone.utc),
            metadata={"repository": push["repository"], "blocked": True},
        )
        await self.audit_service.record(
            "execution_blocked",
            "execution",
            execution.id,
            details={
                "reason": reason,
                "branch": push["branch"],
                "commit": push["commit_hash"],
            },
        )
        log_execution_event(execution.id, "blocked", level="warning", reason=reason)
        return execution

    async def _create_paused(
        self,
        push: Dict[str, Any],
        environment: str,
        lock: Optional[EnvironmentLock],
    ) -> Execution:
        required_role = lock.required_role if lock is not None else "admin"
        requires_approval = lock.requires_approval if lock is not None else True

        execution = await Execution.create(
            name=push["name"],
            branch=push["branch"],
            commit_hash=push["commit_hash"],
            environment=environment,
            status=ExecutionStatus.PAUSED.value,
            governance_status=GovernanceStatus.AWAITING_APPROVAL.value,
            blocked_reason=(
                f"Environment '{environment}' is locked. "
                f"Requires {required_role} approval."
            ),
            metadata={"repository": push["repository"], "pusher": push["pusher"]},
        )

        if requires_approval:
            await ApprovalRequest.create(
                execution_id=execution.id,
                node_id=GOVERNANCE_GATE_NODE,
                title=f"Deploy to {environment}",
                description=(
                    f"Branch {push['branch']} ({push['commit_hash'][:7]}) requires "
                    f"approval for {environment} deployment."
                ),
                required_approvals=(
                    2 if environment in DUAL_APPROVAL_ENVIRONMENTS else 1
                ),
            )

        await self.audit_service.record(
            "execution_paused",
            "execution",
            execution.id,
            details={
                "reason": "environment_locked",
                "environment": environment,
                "branch": push["branch"],
                "commit": push["commit_hash"],
            },
        )
        log_execution_event(
            execution.id, "awaiting_approval", environment=environment
        )
        return execution

    async def _create_allowed(
        self, push: Dict[str, Any], environment: str
    ) -> Execution:
        execution = await Execution.create(
            name=push["name"],
            branch=push["branch"],
            commit_hash=push["commit_hash"],
            environment=environment,
            status=ExecutionStatus.IDLE.value,
            governance_status=GovernanceStatus.ALLOWED.value,
            metadata={"repository": push["repository"], "pusher": push["pusher"]},
        )
        await self.audit_service.record(
            "execution_created",
            "execution",
            execution.id,
            details={
                "trigger": "github_push",
                "environment": environment,
                "branch": push["branch"],
                "commit": push["commit_hash"],
            },
        )
        await ExecutionLog.create(
            execution_id=execution.id,
            node_id="trigger",
            level="info",
            message=(
                f"Execution triggered by push to {push['branch']} "
                f"({push['commit_hash'][:7]})"
            ),
        )
        log_execution_event(execution.id, "created", environment=environment)
        return execution

    async def _find_by_run(
        self, run_id: Optional[int], name: Optional[str] = None
    ) -> Optional[Execution]:
        """
        Find the execution of a workflow run.

        Falls back to an ``opzenix-<execution id>`` marker in the run name and
        links the run to that execution.
        """
        if run_id is not None:
            execution = await Execution.get_or_none(github_run_id=run_id)
            if execution is not None:
                return execution

        match = RUN_NAME_PATTERN.search(name or "")
        if match is None:
            return None
        execution = await Execution.get_or_none(id=UUID(match.group(1)))
        if execution is not None and run_id is not None:
            execution.github_run_id = run_id
            await execution.save()
        return execution

    async def handle_workflow_run(self, payload: Dict[str, Any]) -> Optional[Execution]:
        run = payload.get("workflow_run")
        if not run:
            return None

        execution = await self._find_by_run(
            run.get("id"), run.get("display_title") or run.get("name")
        )
        if execution is None:
            logger.info("No matching execution for workflow run", run_id=run.get("id"))
            return None

        status = ExecutionStatus(
            map_github_status(run.get("status"), run.get("conclusion"))
        )
        self._advance_execution(execution, status)
        execution.metadata = {
            **(execution.metadata or {}),
            "github_url": run.get("html_url"),
            "github_updated_at": run.get("updated_at"),
        }
        await execution.save()

        detail = f" - {run['conclusion']}" if run.get("conclusion") else ""
        await ExecutionLog.create(
            execution_id=execution.id,
            node_id="workflow",
            level="error" if status == ExecutionStatus.FAILED else "info",
            message=f"Workflow {run.get('status')}{detail}",
        )
        logger.info(
            "Workflow run applied",
            execution_id=str(execution.id),
            status=execution.status,
        )
        return execution

    def _advance_execution(self, execution: Execution, target: ExecutionStatus) -> None:
        """Move an execution towards a GitHub reported status, if allowed."""
        current = execution.status
        if current == target.value:
            return
        # a run may report completion without an earlier in_progress event
        if not execution_machine.can_transition(current, target) and (
            target != ExecutionStatus.SUCCESS
            or not execution_machine.can_transition(current, ExecutionStatus.RUNNING)
        ):
            logger.warning(
                "Ignoring GitHub status change",
                execution_id=str(execution.id),
                from_status=current,
                to_status=target.value,
            )
            return

        now = datetime.now(timezone.utc)
        if target in (ExecutionStatus.RUNNING, ExecutionStatus.SUCCESS):
            execution.started_at = execution.started_at or now
        if execution_machine.is_terminal(target):
            execution.completed_at = now
        execution.status = target.value

    async def handle_workflow_job(self, payload: Dict[str, Any]) -> None:
        job = payload.get("workflow_job")
        if not job:
            return

        name = job.get("name") or ""
        execution_id: Optional[UUID] = None
        node_id: Optional[str] = None

        match = JOB_NAME_PATTERN.match(name)
        if match is not None:
            execution_id = UUID(match.group(1))
            node_id = match.group(2)
        else:
            execution = await self._find_by_run(job.get("run_id"))
            if execution is not None:
                execution_id = execution.id
        if execution_id is None or not await Execution.exists(id=execution_id):
            logger.info("No matching execution for workflow job", job=name)
            return

        status = NodeStatus(map_github_status(job.get("status"), job.get("conclusion")))
        if node_id:
            await self._apply_job_to_node(execution_id, node_id, job, status)

        for step in job.get("steps") or []:
            detail = f" - {step['conclusion']}" if step.get("conclusion") else ""
            await ExecutionLog.create(
                execution_id=execution_id,
                node_id=node_id or name,
                level="error" if step.get("conclusion") == "failure" else "info",
                message=f"[{step.get('name')}] {step.get('status')}{detail}",
            )

        if status == NodeStatus.SUCCESS and node_id:
            await Checkpoint.create(
                execution_id=execution_id,
                node_id=node_id,
                name=f"{node_id} completed",
                state={
                    "job_id": job.get("id"),
                    "completed_at": job.get("completed_at"),
                    "steps": [
                        {"name": s.get("name"), "status": s.get("conclusion")}
                        for s in job.get("steps") or []
                    ],
                },
            )

    async def _apply_job_to_node(
        self,
        execution_id: UUID,
        node_id: str,
        job: Dict[str, Any],
        status: NodeStatus,
    ) -> None:
        node = await ExecutionNode.get_or_none(
            execution_id=execution_id, node_id=node_id
        )
        if node is None:
            logger.info(
                "Workflow job for unknown node",
                execution_id=str(execution_id),
                node_id=node_id,
            )
            return
        if node.status == status.value:
            return
        if not node_machine.can_transition(node.status, status):
            logger.warning(
                "Ignoring GitHub job status change",
                execution_id=str(execution_id),
                node_id=node_id,
                from_status=node.status,
                to_status=status.value,
            )
            return

        started_at = _parse_time(job.get("started_at"))
        completed_at = _parse_time(job.get("completed_at"))

        node.status = status.value
        if status == NodeStatus.RUNNING and started_at:
            node.started_at = started_at
        if node_machine.is_terminal(status) and completed_at:
            node.completed_at = completed_at
            if started_at:
                elapsed = completed_at - started_at
                node.duration_ms = int(elapsed.total_seconds() * 1000)
        await node.save()

    async def add_branch_mapping(
        self,
        repository: str,
        branch_pattern: str,
        environment: str,
        is_deployable: bool = True,
    ) -> BranchMappingResponse:
        mapping = await BranchMapping.create(
            repository=repository,
            branch_pattern=branch_pattern,
            environment=environment,
            is_deployable=is_deployable,
        )
        logger.info(
            "Branch mapping added",
            repository=repository,
            branch_pattern=branch_pattern,
            environment=environment,
        )
        return BranchMappingResponse.model_validate(mapping)

    async def list_branch_mappings(
        self, repository: Optional[str] = None
    ) -> List[BranchMappingResponse]:
        query = BranchMapping.all()
        if repository:
            query = query.filter(repository=repository)
        mappings = await query.order_by("repository", "branch_pattern")
        return [BranchMappingResponse.model_validate(m) for m in mappings]
