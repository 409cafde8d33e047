"""Tests for remote job polling."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from common.types import RemoteJobHandle
from replicator.exceptions import RemoteJobFailedError, RemoteJobTimeoutError, RemoteRequestError
from replicator.task_poller import TaskPoller, extract_artifact_id

from conftest import NODE_A

PENDING = {"status": "STARTED"}


@pytest.fixture
def handle():
    return RemoteJobHandle(node=NODE_A, kind="export", job_id="job-1")


def make_client(*responses):
    client = MagicMock()
    client.get_job = AsyncMock(side_effect=list(responses))
    client.delete_job = AsyncMock()
    return client


class TestAwaitCompletion:
    """Test polling until a terminal status."""

    @pytest.mark.asyncio
    async def test_returns_query_response_on_success(self, handle):
        client = make_client(PENDING, PENDING, {"status": "COMPLETED", "queryResponse": {"id": "x"}})
        poller = TaskPoller(client, poll_interval=0.001)

        result = await poller.await_completion(handle, timeout=5)

        assert result == {"id": "x"}
        assert client.get_job.await_count == 3
        client.delete_job.assert_awaited_once_with(handle)

    @pytest.mark.asyncio
    async def test_returns_whole_payload_without_query_response(self, handle):
        body = {"status": "COMPLETED", "result": {"policyReference": {"link": "https://localhost/p/abc"}}}
        poller = TaskPoller(make_client(body), poll_interval=0.001)

        assert await poller.await_completion(handle, timeout=5) == body

    @pytest.mark.asyncio
    async def test_failure_raises_with_payload(self, handle):
        body = {"status": "FAILURE", "result": {"message": "bad policy"}}
        client = make_client(PENDING, body)
        poller = TaskPoller(client, poll_interval=0.001)

        with pytest.raises(RemoteJobFailedError) as exc_info:
            await poller.await_completion(handle, timeout=5)

        assert exc_info.value.payload == body
        assert "bad policy" in str(exc_info.value)
        client.delete_job.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_timeout_is_never_early(self, handle):
        client = MagicMock()
        client.get_job = AsyncMock(return_value=PENDING)
        poller = TaskPoller(client, poll_interval=0.01)

        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(RemoteJobTimeoutError) as exc_info:
            await poller.await_completion(handle, timeout=0.05)

        assert loop.time() - started >= 0.05
        assert exc_info.value.last_payload == PENDING

    @pytest.mark.asyncio
    async def test_zero_timeout_polls_once(self, handle):
        client = make_client(PENDING)
        poller = TaskPoller(client, poll_interval=0.001)

        with pytest.raises(RemoteJobTimeoutError):
            await poller.await_completion(handle, timeout=0)
        assert client.get_job.await_count == 1

    @pytest.mark.asyncio
    async def test_job_deletion_failure_is_ignored(self, handle):
        client = make_client({"status": "SUCCESS"})
        client.delete_job = AsyncMock(side_effect=RemoteRequestError("gone", status=404))
        poller = TaskPoller(client, poll_interval=0.001)

        assert await poller.await_completion(handle, timeout=5) == {"status": "SUCCESS"}

    @pytest.mark.asyncio
    async def test_status_query_errors_propagate(self, handle):
        client = make_client(RemoteRequestError("boom", status=500))
        poller = TaskPoller(client, poll_interval=0.001)

        with pytest.raises(RemoteRequestError):
            await poller.await_completion(handle, timeout=5)


class TestExtractArtifactId:
    """Test reading the assigned policy id from job payloads."""

    def test_policy_reference_in_result(self):
        payload = {"result": {"policyReference": {"link": "https://localhost/mgmt/tm/asm/policies/abc123?ver=16.1"}}}
        assert extract_artifact_id(payload) == "abc123"

    def test_top_level_policy_reference(self):
        payload = {"policyReference": {"link": "https://localhost/mgmt/tm/asm/policies/xyz/"}}
        assert extract_artifact_id(payload) == "xyz"

    def test_result_id(self):
        assert extract_artifact_id({"result": {"id": 42}}) == "42"

    def test_missing(self):
        assert extract_artifact_id({"status": "COMPLETED"}) is None
        assert extract_artifact_id(None) is None
