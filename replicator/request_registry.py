"""Process-wide map from request key to observable replication status."""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from common.logging_config import get_logger
from common.types import ReplicationRequest, RequestKey, StageState
from replicator.exceptions import ConflictError

logger = get_logger(__name__)


class RequestStatusRegistry:
    """
    Registry of open replication requests.

    Written only by the orchestrator and read by the status surface; all
    access happens on the event loop thread, so no locking is needed.
    """

    def __init__(self):
        self._requests: Dict[RequestKey, ReplicationRequest] = {}

    def __len__(self) -> int:
        return len(self._requests)

    def __contains__(self, key: RequestKey) -> bool:
        return key in self._requests

    def get(self, key: RequestKey) -> Optional[ReplicationRequest]:
        return self._requests.get(key)

    def for_target(self, target: str) -> List[ReplicationRequest]:
        """All tracked requests for one target node key ('host:port')."""
        return [request for key, request in self._requests.items() if key.target == target]

    def find_by_name(self, target: str, artifact_name: str) -> Optional[ReplicationRequest]:
        """Tracked request on a target whose policy name matches."""
        for request in self.for_target(target):
            if artifact_name in (request.artifact_name, request.target_artifact_name):
                return request
        return None

    def create(self, request: ReplicationRequest) -> ReplicationRequest:
        """
        Register a newly accepted request.

        Raises:
            ConflictError: If a request with the same key is already tracked
        """
        existing = self._requests.get(request.key)
        if existing is not None:
            raise ConflictError(
                f"policy {request.key.artifact_id} is already tracked for {request.key.target} "
                f"(state {existing.state.value})"
            )
        self._requests[request.key] = request
        return request

    def upsert(
        self,
        key: RequestKey,
        state: StageState,
        error_detail: Optional[str] = None
    ) -> ReplicationRequest:
        """
        Move a request to a new state, creating a placeholder record if it is unknown.
        """
        request = self._requests.get(key)
        if request is None:
            logger.warning(f"Creating placeholder status record for untracked request {key}")
            request = ReplicationRequest(key=key, artifact_name="UNKNOWN")
            self._requests[key] = request

        request.state = state
        request.error_detail = error_detail
        request.updated_at = datetime.now(timezone.utc)
        return request

    def rekey(self, old_key: RequestKey, new_key: RequestKey) -> ReplicationRequest:
        """
        Move a request under a new key (the target assigned a different policy id).
        """
        if old_key == new_key:
            return self._requests[old_key]

        if new_key in self._requests:
            raise ConflictError(f"policy {new_key.artifact_id} is already tracked for {new_key.target}")

        request = self._requests.pop(old_key)
        request.key = new_key
        self._requests[new_key] = request
        logger.info(f"Re-keyed request {old_key.artifact_id} -> {new_key.artifact_id} on {new_key.target}")
        return request

    def remove(self, key: RequestKey) -> Optional[ReplicationRequest]:
        return self._requests.pop(key, None)
