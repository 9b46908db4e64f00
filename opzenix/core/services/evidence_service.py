"""
CI evidence and test report ingestion.

Each CI step (SAST, secret scanning, tests, image scan, signing, ...)
reports its outcome as evidence attached to an execution. The execution's
progress follows the share of completed steps.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from ..database.schemas import CIEvidenceResponse, TestResultResponse
from ..errors import NotFoundError, ValidationFailedError
from ..executions.lifecycle import ExecutionStatus, execution_machine
from ..logging import get_logger
from ..models import CIEvidence, Execution
from ..models import tortoise_models as models
from ..security.junit import JUnitParseError, parse_junit

logger = get_logger(__name__)

REQUIRED_FIELDS = ("execution_id", "step_name", "step_type", "status")

STEP_ORDER_MAP: Dict[str, int] = {
    "sast": 1,
    "secrets": 2,
    "dependency": 3,
    "test": 4,
    "build": 5,
    "scan": 6,
    "sign": 7,
    "dast": 8,
}
DEFAULT_STEP_ORDER = 99

# Progress never reaches 100% before this many steps reported
EXPECTED_STEPS = 8

COMPLETED_STATUSES = ("passed", "failed", "skipped")
OPEN_STATUSES = ("running", "pending")


def step_order_for(step_type: str) -> int:
    return STEP_ORDER_MAP.get(step_type, DEFAULT_STEP_ORDER)


class EvidenceService:
    """Records CI step evidence and parsed test reports."""

    async def upsert(self, item: Dict[str, Any]) -> CIEvidence:
        """
        Create or update the evidence of one step.

        Evidence is keyed by execution and step name; a later report for the
        same step updates the outcome fields of the existing row.
        """
        now = datetime.now(timezone.utc)
        status = item["status"]
        completed_at = item.get("completed_at") or (
            now if status not in OPEN_STATUSES else None
        )

        evidence = await CIEvidence.get_or_none(
            execution_id=item["execution_id"], step_name=item["step_name"]
        )
        if evidence is not None:
            evidence.status = status
            evidence.summary = item.get("summary")
            evidence.details = item.get("details") or {}
            evidence.duration_ms = item.get("duration_ms")
            evidence.completed_at = completed_at
            await evidence.save()
            logger.debug("Updated CI evidence", evidence_id=str(evidence.id))
            return evidence

        step_order = item.get("step_order")
        evidence = await CIEvidence.create(
            execution_id=item["execution_id"],
            step_name=item["step_name"],
            step_type=item["step_type"],
            step_order=(
                step_order
                if step_order is not None
                else step_order_for(item["step_type"])
            ),
            status=status,
            evidence_url=item.get("evidence_url"),
            summary=item.get("summary"),
            details=item.get("details") or {},
            duration_ms=item.get("duration_ms"),
            started_at=item.get("started_at") or (now if status == "running" else None),
            completed_at=completed_at,
        )
        logger.debug("Created CI evidence", evidence_id=str(evidence.id))
        return evidence

    async def record(
        self, payload: Union[Dict[str, Any], List[Dict[str, Any]]]
    ) -> Dict[str, Any]:
        """
        Record one evidence item or a batch of them.

        Items missing any of ``execution_id``, ``step_name``, ``step_type`` or
        ``status`` are skipped, as are items for unknown executions. The
        progress of every touched execution is recomputed afterwards.

        Returns:
            Number of recorded items and the stored evidence
        """
        items = payload if isinstance(payload, list) else [payload]
        logger.info("Recording CI evidence", count=len(items))

        recorded: List[CIEvidence] = []
        for item in items:
            missing = [field for field in REQUIRED_FIELDS if not item.get(field)]
            if missing:
                logger.warning(
                    "Skipping CI evidence with missing fields", missing=missing
                )
                continue
            if not await Execution.exists(id=item["execution_id"]):
                logger.warning(
                    "Skipping CI evidence for unknown execution",
                    execution_id=str(item["execution_id"]),
                )
                continue
            recorded.append(await self.upsert(item))

        execution_ids = []
        for evidence in recorded:
            if evidence.execution_id not in execution_ids:
                execution_ids.append(evidence.execution_id)
        for execution_id in execution_ids:
            await self.update_progress(execution_id)

        return {
            "recorded": len(recorded),
            "data": [CIEvidenceResponse.model_validate(e) for e in recorded],
        }

    async def update_progress(self, execution_id: UUID) -> Optional[int]:
        """
        Recompute execution progress from its evidence.

        Returns:
            The new progress, or None when the execution does not exist
        """
        execution = await Execution.get_or_none(id=execution_id)
        if execution is None:
            return None

        statuses = await CIEvidence.filter(execution_id=execution_id).values_list(
            "status", flat=True
        )
        completed = sum(1 for status in statuses if status in COMPLETED_STATUSES)
        failed = sum(1 for status in statuses if status == "failed")
        progress = round(completed / max(len(statuses), EXPECTED_STEPS) * 100)

        if failed:
            target = ExecutionStatus.FAILED
        elif progress >= 100:
            target = ExecutionStatus.SUCCESS
        else:
            target = ExecutionStatus.RUNNING

        execution.progress = progress
        if execution.status != target.value and execution_machine.can_transition(
            execution.status, target
        ):
            execution.status = target.value
            if execution_machine.is_terminal(target):
                execution.completed_at = datetime.now(timezone.utc)
        await execution.save()

        logger.info(
            "Updated execution progress from evidence",
            execution_id=str(execution_id),
            progress=progress,
            status=execution.status,
        )
        return progress

    async def list(self, execution_id: UUID) -> List[CIEvidenceResponse]:
        """Evidence of an execution in pipeline step order."""
        if not await Execution.exists(id=execution_id):
            raise NotFoundError("Execution", execution_id)
        evidence = await CIEvidence.filter(execution_id=execution_id).order_by(
            "step_order", "created_at"
        )
        return [CIEvidenceResponse.model_validate(e) for e in evidence]

    async def parse_test_results(
        self,
        execution_id: Optional[str],
        report_xml: Optional[str],
        report_url: Optional[str] = None,
        test_type: str = "unit",
        coverage_percent: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Store a JUnit report for an execution.

        Args:
            execution_id: Execution the tests ran for
            report_xml: JUnit XML document
            report_url: Link to the full report
            test_type: ``unit``, ``integration``, ``e2e``, ...
            coverage_percent: Line coverage reported alongside the tests

        Returns:
            The stored test result and the report totals

        Raises:
            ValidationFailedError: If the execution id or report is missing,
                or the report is not valid JUnit XML
            NotFoundError: If the execution does not exist
        """
        if not execution_id:
            raise ValidationFailedError(
                "execution_id is required", {"required": ["execution_id"]}
            )
        if not report_xml:
            raise ValidationFailedError(
                "report_xml is required", {"required": ["report_xml"]}
            )
        if not await Execution.exists(id=execution_id):
            raise NotFoundError("Execution", execution_id)

        try:
            report = parse_junit(report_xml)
        except JUnitParseError as e:
            raise ValidationFailedError(str(e)) from e

        logger.info(
            "Parsed test report",
            execution_id=str(execution_id),
            total=report.total_tests,
            passed=report.passed,
            failed=report.failed,
            skipped=report.skipped,
        )

        result = await models.TestResult.create(
            execution_id=execution_id,
            suite_name=report.suite_name,
            test_type=test_type,
            total_tests=report.total_tests,
            passed=report.passed,
            failed=report.failed,
            skipped=report.skipped,
            duration_ms=round(report.duration_ms),
            coverage_percent=coverage_percent,
            report_url=report_url,
            details={
                "suites": [
                    suite.model_dump(exclude={"testcases"}) for suite in report.suites
                ],
                "failures": [
                    testcase.model_dump()
                    for suite in report.suites
                    for testcase in suite.testcases
                    if testcase.status == "failed"
                ],
            },
        )

        summary = f"{report.passed}/{report.total_tests} passed"
        if coverage_percent is not None:
            summary += f", {coverage_percent}% coverage"
        await self.upsert(
            {
                "execution_id": execution_id,
                "step_name": f"{test_type.capitalize()} Tests",
                "step_type": "test",
                "step_order": 4 if test_type == "unit" else 5,
                "status": "failed" if report.failed > 0 else "passed",
                "evidence_url": report_url,
                "summary": summary,
                "details": {
                    "total": report.total_tests,
                    "passed": report.passed,
                    "failed": report.failed,
                    "skipped": report.skipped,
                    "coverage": coverage_percent,
                },
                "duration_ms": round(report.duration_ms),
            }
        )
        await self.update_progress(execution_id)

        return {
            "data": TestResultResponse.model_validate(result),
            "summary": {
                "total": report.total_tests,
                "passed": report.passed,
                "failed": report.failed,
                "skipped": report.skipped,
                "duration_ms": report.duration_ms,
                "coverage": coverage_percent,
            },
        }
