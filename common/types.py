"""Shared data type definitions (NodeAddress, ArtifactRecord, StageState, job handles, keys)."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import NamedTuple, Optional

from common.constants import (
    LOCAL_NODE_HOST,
    REMOTE_STATUS_COMPLETED,
    REMOTE_STATUS_SUCCESS,
    REMOTE_STATUS_FAILURE,
    REMOTE_STATUS_FAILED,
)


class StageState(str, Enum):
    """Observable state of a replication request."""
    REQUESTED = "REQUESTED"
    EXPORTING = "EXPORTING"
    DOWNLOADING = "DOWNLOADING"
    REMOVING = "REMOVING"
    UPLOADING = "UPLOADING"
    IMPORTING = "IMPORTING"
    APPLYING = "APPLYING"
    AVAILABLE = "AVAILABLE"
    ERROR = "ERROR"

    @property
    def is_terminal(self) -> bool:
        return self in (StageState.AVAILABLE, StageState.ERROR)


INACTIVE_STATE = "INACTIVE"


class JobStatus(str, Enum):
    """Normalized status of a remote asynchronous job."""
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"

    @classmethod
    def from_remote(cls, value: Optional[str]) -> "JobStatus":
        """Map a status string reported by a node onto a JobStatus."""
        if value in (REMOTE_STATUS_COMPLETED, REMOTE_STATUS_SUCCESS):
            return cls.SUCCESS
        if value in (REMOTE_STATUS_FAILURE, REMOTE_STATUS_FAILED):
            return cls.FAILURE
        return cls.PENDING


@dataclass(frozen=True)
class NodeAddress:
    """
    Reachable address of a trusted node.
    """
    host: str
    port: int
    uuid: Optional[str] = None
    version: Optional[str] = None
    state: Optional[str] = None
    scheme: str = "https"

    @property
    def is_local(self) -> bool:
        return self.host == LOCAL_NODE_HOST

    @property
    def key(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"


@dataclass(frozen=True)
class ArtifactRecord:
    """
    A policy as reported by a node.
    """
    id: str
    name: str
    enforcement_mode: Optional[str] = None
    path: Optional[str] = None
    active: bool = True
    version_timestamp: Optional[str] = None


@dataclass(frozen=True)
class RemoteJobHandle:
    """
    Handle to an asynchronous job running on a node.
    """
    node: NodeAddress
    kind: str
    job_id: str

    @property
    def poll_path(self) -> str:
        return f"/mgmt/tm/asm/tasks/{self.kind}-policy/{self.job_id}"


@dataclass(frozen=True)
class CachedArtifact:
    """
    A staged export file in the local staging directory.
    """
    path: Path
    artifact_id: str
    version_timestamp: str
    created_at: datetime


class RequestKey(NamedTuple):
    """Identity of a replication request: target node key plus artifact id."""
    target: str
    artifact_id: str


class OperationKey(NamedTuple):
    """Identity of a coalesced unit of work on one staged version of a policy."""
    kind: str
    node: str
    artifact_id: str
    version: Optional[str] = None


@dataclass
class ReplicationRequest:
    """
    Observable status record for one replication operation.
    """
    key: RequestKey
    artifact_name: str
    state: StageState = StageState.REQUESTED
    enforcement_mode: Optional[str] = None
    path: Optional[str] = None
    version_timestamp: Optional[str] = None
    source: Optional[str] = None
    target_artifact_name: Optional[str] = None
    error_detail: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def artifact_id(self) -> str:
        return self.key.artifact_id

    def snapshot(self) -> dict:
        """Serializable view used by the status surface."""
        return {
            "id": self.key.artifact_id,
            "name": self.target_artifact_name or self.artifact_name,
            "enforcementMode": self.enforcement_mode,
            "state": self.state.value,
            "path": self.path,
            "versionTimestamp": self.version_timestamp,
            "source": self.source,
            "target": self.key.target,
            "error": self.error_detail,
        }
