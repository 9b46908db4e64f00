"""
Tests for CI evidence and test report ingestion.
"""

from uuid import uuid4

import pytest

from opzenix.core.errors import NotFoundError, ValidationFailedError
from opzenix.core.models import CIEvidence, Execution
from opzenix.core.models import tortoise_models as models
from opzenix.core.services.evidence_service import EvidenceService, step_order_for

JUNIT_REPORT = """<testsuite name="unit" tests="4" failures="1" time="1.2">
  <testcase name="a"/><testcase name="b"/><testcase name="c"/>
  <testcase name="d"><failure message="expected 2"/></testcase>
</testsuite>"""


def evidence(execution_id, step_name: str, step_type: str, status: str = "passed"):
    return {
        "execution_id": str(execution_id),
        "step_name": step_name,
        "step_type": step_type,
        "status": status,
    }


@pytest.fixture
async def execution(db):
    return await Execution.create(name="ci", status="running")


def test_step_order():
    assert step_order_for("sast") == 1
    assert step_order_for("dast") == 8
    assert step_order_for("lint") == 99


class TestRecordEvidence:
    """Test evidence recording and progress."""

    async def test_single_item(self, execution):
        result = await EvidenceService().record(
            {**evidence(execution.id, "Semgrep", "sast"), "summary": "0 findings"}
        )

        assert result["recorded"] == 1
        item = result["data"][0]
        assert item.step_order == 1
        assert item.summary == "0 findings"
        assert item.completed_at is not None

        await execution.refresh_from_db()
        assert execution.progress == 12  # 1 of 8 expected steps

    async def test_batch_skips_invalid_items(self, execution):
        result = await EvidenceService().record(
            [
                evidence(execution.id, "Semgrep", "sast"),
                {"execution_id": str(execution.id), "step_name": "Partial"},
                evidence(uuid4(), "Elsewhere", "sast"),
            ]
        )

        assert result["recorded"] == 1
        assert await CIEvidence.all().count() == 1

    async def test_same_step_updates(self, execution):
        service = EvidenceService()
        await service.record(evidence(execution.id, "Unit", "test", "running"))
        running = await CIEvidence.get(step_name="Unit")
        assert running.started_at is not None
        assert running.completed_at is None

        await service.record(
            {**evidence(execution.id, "Unit", "test"), "duration_ms": 1500}
        )

        stored = await CIEvidence.filter(execution_id=execution.id)
        assert len(stored) == 1
        assert stored[0].status == "passed"
        assert stored[0].duration_ms == 1500
        assert stored[0].completed_at is not None

    async def test_failed_step_fails_execution(self, execution):
        await EvidenceService().record(
            evidence(execution.id, "Secrets", "secrets", "failed")
        )

        await execution.refresh_from_db()
        assert execution.status == "failed"
        assert execution.completed_at is not None

    async def test_all_steps_complete_execution(self, execution):
        steps = ["sast", "secrets", "dependency", "test", "build", "scan", "sign"]
        items = [evidence(execution.id, s.title(), s) for s in steps]
        items.append(evidence(execution.id, "Zap", "dast", "skipped"))

        await EvidenceService().record(items)

        await execution.refresh_from_db()
        assert execution.progress == 100
        assert execution.status == "success"

    async def test_idle_execution_starts_running(self, db):
        execution = await Execution.create(name="ci")

        await EvidenceService().record(evidence(execution.id, "Semgrep", "sast"))

        await execution.refresh_from_db()
        assert execution.status == "running"

    async def test_finished_execution_keeps_status(self, db):
        execution = await Execution.create(name="ci", status="success")

        await EvidenceService().record(
            evidence(execution.id, "Late", "sast", "failed")
        )

        await execution.refresh_from_db()
        assert execution.status == "success"

    async def test_list_in_step_order(self, execution):
        service = EvidenceService()
        await service.record(
            [
                evidence(execution.id, "Sign", "sign"),
                evidence(execution.id, "Semgrep", "sast"),
                evidence(execution.id, "Lint", "lint"),
            ]
        )

        listed = await service.list(execution.id)
        assert [e.step_name for e in listed] == ["Semgrep", "Sign", "Lint"]

        with pytest.raises(NotFoundError):
            await service.list(uuid4())


class TestTestResults:
    """Test JUnit report ingestion."""

    async def test_parse_report(self, execution):
        result = await EvidenceService().parse_test_results(
            str(execution.id),
            JUNIT_REPORT,
            report_url="https://ci.example.com/report",
            coverage_percent=87.5,
        )

        assert result["summary"]["total"] == 4
        assert result["summary"]["passed"] == 3
        assert result["summary"]["failed"] == 1
        assert result["data"].suite_name == "unit"
        assert result["data"].duration_ms == 1200

        stored = await models.TestResult.get(execution_id=execution.id)
        assert stored.details["failures"][0]["name"] == "d"

        step = await CIEvidence.get(execution_id=execution.id, step_name="Unit Tests")
        assert step.status == "failed"
        assert step.step_order == 4
        assert step.summary == "3/4 passed, 87.5% coverage"
        assert step.evidence_url == "https://ci.example.com/report"

        await execution.refresh_from_db()
        assert execution.status == "failed"

    async def test_integration_report_order(self, execution):
        passing = '<testsuite name="it"><testcase name="a"/></testsuite>'

        await EvidenceService().parse_test_results(
            str(execution.id), passing, test_type="integration"
        )

        step = await CIEvidence.get(step_name="Integration Tests")
        assert step.status == "passed"
        assert step.step_order == 5
        assert step.summary == "1/1 passed"

        await execution.refresh_from_db()
        assert execution.status == "running"
        assert execution.progress == 12

    async def test_missing_fields(self, execution):
        service = EvidenceService()
        with pytest.raises(ValidationFailedError):
            await service.parse_test_results(None, JUNIT_REPORT)
        with pytest.raises(ValidationFailedError):
            await service.parse_test_results(str(execution.id), "")

    async def test_unknown_execution(self, db):
        with pytest.raises(NotFoundError):
            await EvidenceService().parse_test_results(str(uuid4()), JUNIT_REPORT)

    async def test_invalid_xml(self, execution):
        with pytest.raises(ValidationFailedError):
            await EvidenceService().parse_test_results(str(execution.id), "<broken")
