"""Polling of remote asynchronous jobs until a terminal status or a deadline."""

import asyncio
import json
from typing import Any, Dict, Optional

from common.constants import POLL_INTERVAL_SECONDS, DEFAULT_JOB_TIMEOUT_SECONDS
from common.logging_config import get_logger
from common.types import JobStatus, RemoteJobHandle
from replicator.exceptions import RemoteJobFailedError, RemoteJobTimeoutError

logger = get_logger(__name__)


def extract_artifact_id(payload: Any) -> Optional[str]:
    """
    Read the policy id a node assigned from a job's terminal payload.

    Looks for a policyReference link (the id is its last path segment)
    or a plain id, either at the top level or under 'result'.

    Returns:
        Policy id, or None when the payload does not carry one
    """
    if not isinstance(payload, dict):
        return None

    candidates = [payload]
    if isinstance(payload.get("result"), dict):
        candidates.insert(0, payload["result"])

    for candidate in candidates:
        reference = candidate.get("policyReference")
        if isinstance(reference, dict) and reference.get("link"):
            link = reference["link"].split("?", 1)[0].rstrip("/")
            return link.rsplit("/", 1)[-1]

    result = payload.get("result")
    if isinstance(result, dict) and result.get("id"):
        return str(result["id"])
    return None


class TaskPoller:
    """
    Converts a remote asynchronous job into a single awaited result.
    """

    def __init__(
        self,
        node_client,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        default_timeout: float = DEFAULT_JOB_TIMEOUT_SECONDS
    ):
        """
        Args:
            node_client: Client exposing get_job(handle) and delete_job(handle)
            poll_interval: Seconds to wait between status queries
            default_timeout: Deadline used when await_completion gets none
        """
        self.node_client = node_client
        self.poll_interval = poll_interval
        self.default_timeout = default_timeout

    async def await_completion(
        self,
        handle: RemoteJobHandle,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Poll a job until it succeeds, fails or the timeout elapses.

        Args:
            handle: Job to poll
            timeout: Seconds allowed since the first poll
            poll_interval: Seconds between polls

        Returns:
            The job's queryResponse member if present, otherwise the full status body

        Raises:
            RemoteJobFailedError: If the job reports FAILURE
            RemoteJobTimeoutError: If the job is still pending once the timeout has elapsed
        """
        timeout = self.default_timeout if timeout is None else timeout
        interval = self.poll_interval if poll_interval is None else poll_interval

        loop = asyncio.get_running_loop()
        started = loop.time()
        polls = 0

        while True:
            body = await self.node_client.get_job(handle)
            polls += 1
            status = JobStatus.from_remote(body.get("status") if isinstance(body, dict) else None)

            if status is JobStatus.SUCCESS:
                logger.info(
                    f"{handle.kind} job {handle.job_id} on {handle.node.key} completed after {polls} polls"
                )
                await self._delete_job(handle)
                if isinstance(body, dict) and "queryResponse" in body:
                    return body["queryResponse"]
                return body

            if status is JobStatus.FAILURE:
                raise RemoteJobFailedError(
                    f"{handle.kind} job {handle.job_id} on {handle.node.key} failed: {_describe(body)}",
                    payload=body
                )

            elapsed = loop.time() - started
            if elapsed >= timeout:
                raise RemoteJobTimeoutError(
                    f"{handle.kind} job {handle.job_id} on {handle.node.key} did not complete "
                    f"within {timeout}s, last status: {_describe(body)}",
                    last_payload=body
                )

            await asyncio.sleep(interval)

    async def _delete_job(self, handle: RemoteJobHandle) -> None:
        """Best-effort removal of the finished job record."""
        try:
            await self.node_client.delete_job(handle)
        except Exception as e:
            logger.warning(f"Failed to delete {handle.kind} job {handle.job_id} on {handle.node.key}: {e}")


def _describe(body: Any) -> str:
    if isinstance(body, dict):
        return json.dumps(body, default=str)
    return str(body)
