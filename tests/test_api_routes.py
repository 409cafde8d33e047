"""Tests for the replicator HTTP API."""

import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from replicator.main import app
from replicator.service_locator import get_cache_sweeper, set_orchestrator

from conftest import NODE_A, NODE_B, NODE_OLD, make_policy


@pytest.fixture
def api_client(orchestrator):
    """TestClient over an app wired to the fake-cluster orchestrator."""
    set_orchestrator(orchestrator)
    with TestClient(app) as client:
        yield client
    set_orchestrator(None)


def wait_for_policy(client, target, name, state="AVAILABLE", attempts=200):
    for _ in range(attempts):
        response = client.get("/policies", params={"target": target})
        for record in response.json():
            if record["name"] == name and record["state"] == state:
                return record
        time.sleep(0.02)
    raise AssertionError(f"{name} never became {state} on {target}")


class TestServiceEndpoints:
    """Test liveness and readiness."""

    def test_health_has_request_id(self, api_client):
        response = api_client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.headers["X-Request-ID"]

    def test_ready(self, api_client):
        response = api_client.get("/ready")

        assert response.status_code == 200
        assert response.json()["ready"] is True
        assert response.json()["staging"] == "ok"

    def test_sweeper_started_on_startup(self, api_client):
        assert get_cache_sweeper() is not None

    def test_policies_unavailable_before_startup(self):
        set_orchestrator(None)
        client = TestClient(app)

        response = client.get("/policies")

        assert response.status_code == 503


class TestSubmission:
    """Test POST /policies."""

    def test_query_submission_replicates(self, api_client, cluster):
        response = api_client.post(
            "/policies",
            params={"targetHost": NODE_A.host, "policyName": "web_policy"}
        )

        assert response.status_code == 202
        accepted = response.json()["accepted"]
        assert len(accepted) == 1
        assert accepted[0]["state"] == "REQUESTED"
        assert accepted[0]["target"] == NODE_A.key
        assert accepted[0]["id"] == "p1"

        record = wait_for_policy(api_client, NODE_A.host, "web_policy")
        assert record["versionTimestamp"] == "2024-05-01T10:00:00Z"

    def test_json_body_with_several_targets(self, api_client, cluster):
        response = api_client.post(
            "/policies",
            json={"targets": [NODE_A.host, NODE_B.uuid], "policyId": "p1", "targetPolicyName": "copy"}
        )

        assert response.status_code == 202
        assert sorted(r["target"] for r in response.json()["accepted"]) == sorted([NODE_A.key, NODE_B.key])
        assert {r["name"] for r in response.json()["accepted"]} == {"copy"}

        wait_for_policy(api_client, NODE_A.host, "copy")
        wait_for_policy(api_client, NODE_B.host, "copy")

    def test_comma_separated_targets_in_query(self, api_client):
        response = api_client.post(
            "/policies",
            params={"targets": f"{NODE_A.host},{NODE_B.host}", "policyId": "p1"}
        )

        assert response.status_code == 202
        assert len(response.json()["accepted"]) == 2

    def test_missing_policy_parameters(self, api_client):
        response = api_client.post("/policies", params={"targetHost": NODE_A.host})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_unknown_policy(self, api_client):
        response = api_client.post(
            "/policies",
            params={"targetHost": NODE_A.host, "policyName": "missing"}
        )

        assert response.status_code == 404
        assert response.json()["code"] == "POLICY_NOT_FOUND"

    def test_untrusted_target(self, api_client):
        response = api_client.post("/policies", params={"targetHost": "192.0.2.1", "policyId": "p1"})

        assert response.status_code == 404
        assert response.json()["code"] == "UNTRUSTED_NODE"
        assert "not a trusted device" in response.json()["detail"]

    def test_incompatible_target(self, api_client):
        response = api_client.post("/policies", params={"targetUUID": NODE_OLD.uuid, "policyId": "p1"})

        assert response.status_code == 400
        assert response.json()["code"] == "VERSION_INCOMPATIBLE"

    def test_disallowed_url_scheme(self, api_client):
        response = api_client.post(
            "/policies",
            json={"sourceUrl": "file:///etc/passwd", "targets": [NODE_A.host], "targetPolicyName": "x"}
        )

        assert response.status_code == 400


class TestConflicts:
    """Test conflicts with in-flight replications."""

    def test_duplicate_submission_and_delete_conflict(self, api_client, cluster):
        cluster.export_gate = asyncio.Event()
        params = {"targetHost": NODE_A.host, "policyId": "p1"}

        assert api_client.post("/policies", params=params).status_code == 202

        duplicate = api_client.post("/policies", params=params)
        assert duplicate.status_code == 409
        assert duplicate.json()["code"] == "CONFLICT"

        delete = api_client.delete(f"/policies/{NODE_A.host}", params={"policyId": "p1"})
        assert delete.status_code == 409


class TestStatusAndDelete:
    """Test GET and DELETE /policies."""

    def test_status_lists_live_policies(self, api_client, cluster):
        cluster.add_policy(NODE_A, make_policy("a1", name="api_policy"))

        response = api_client.get(f"/policies/{NODE_A.host}")

        assert response.status_code == 200
        assert response.json()[0]["id"] == "a1"
        assert response.json()[0]["state"] == "AVAILABLE"

    def test_status_by_name_prefix(self, api_client, cluster):
        cluster.add_policy(NODE_A, make_policy("a1", name="api_policy"))

        found = api_client.get("/policies", params={"targetHost": NODE_A.host, "name": "api"})
        missing = api_client.get("/policies", params={"targetHost": NODE_A.host, "name": "zzz"})

        assert found.json()["id"] == "a1"
        assert missing.status_code == 404

    def test_status_defaults_to_local_node(self, api_client):
        response = api_client.get("/policies")

        assert response.status_code == 200
        assert [r["name"] for r in response.json()] == ["web_policy"]

    def test_delete_live_policy(self, api_client, cluster):
        cluster.add_policy(NODE_A, make_policy("a1"))

        response = api_client.delete("/policies", params={"targetHost": NODE_A.host, "policyName": "web_policy"})

        assert response.status_code == 200
        assert "removed" in response.json()["msg"]
        assert cluster.policy_named(NODE_A, "web_policy") is None

    def test_delete_clears_errored_replication(self, api_client, cluster):
        cluster.fail_import.add(NODE_A.key)
        api_client.post("/policies", params={"targetHost": NODE_A.host, "policyId": "p1"})
        record = wait_for_policy(api_client, NODE_A.host, "web_policy", state="ERROR")
        assert "import rejected" in record["error"]

        response = api_client.delete(f"/policies/{NODE_A.host}", params={"policyId": "p1"})

        assert response.status_code == 200
        assert "cleared" in response.json()["msg"]

    def test_delete_unknown_policy(self, api_client):
        response = api_client.delete(f"/policies/{NODE_A.host}", params={"policyId": "nope"})

        assert response.status_code == 404
