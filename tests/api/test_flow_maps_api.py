"""
Tests for the flow map endpoint.
"""

from uuid import uuid4


class TestFlowMaps:
    """Test building flow maps over HTTP."""

    def test_finished_demo_execution(self, client, poll) -> None:
        execution_id = client.post(
            "/api/v1/executions/test", json={"environment": "staging"}
        ).json()["id"]
        poll(
            f"/api/v1/executions/{execution_id}",
            lambda body: body["status"] == "success",
        )

        response = client.get(f"/api/v1/flow-maps/{execution_id}")

        assert response.status_code == 200
        assert response.headers["Cache-Control"] == "public, max-age=3600"
        data = response.json()
        assert data["meta"]["pipelineExecutionId"] == execution_id
        assert data["meta"]["environment"] == "Staging"
        assert data["meta"]["immutable"] is True
        assert data["meta"]["tenantId"] == "default-tenant"

        node_ids = [node["id"] for node in data["nodes"]]
        assert node_ids[0] == "source"
        for node_id in ("security-gate", "deploy-staging", "audit-staging"):
            assert node_id in node_ids
        assert {
            "from": "deploy-staging",
            "to": "runtime-staging",
            "type": "SUCCESS",
        } in data["edges"]
        assert [lane["name"] for lane in data["lanes"]] == [
            "ci",
            "Dev",
            "UAT",
            "Staging",
            "PreProd",
            "Prod",
        ]

    def test_paused_execution_is_not_cached(self, client, poll) -> None:
        body = {
            "nodes": [
                {"id": "gate", "data": {"label": "Gate", "stageType": "approval"}}
            ],
            "edges": [],
            "environment": "uat",
        }
        execution_id = client.post("/api/v1/executions", json=body).json()["id"]
        poll(
            f"/api/v1/executions/{execution_id}",
            lambda body: body["status"] == "paused",
        )

        response = client.get(f"/api/v1/flow-maps/{execution_id}")

        assert response.headers["Cache-Control"] == "no-cache"
        data = response.json()
        assert data["meta"]["immutable"] is False
        [approval] = [n for n in data["nodes"] if n["type"] == "approval.gate"]
        assert approval["id"] == "approval-uat"
        assert approval["state"] == "BLOCKED"
        assert approval["data"]["label"] == "Approval Required: Gate"

    def test_unknown_execution(self, client) -> None:
        response = client.get(f"/api/v1/flow-maps/{uuid4()}")

        assert response.status_code == 404
        assert response.json()["error"] == "Execution not found"

    def test_malformed_execution_id(self, client) -> None:
        response = client.get("/api/v1/flow-maps/not-a-uuid")

        assert response.status_code == 422
