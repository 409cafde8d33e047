"""Shared pytest fixtures for all tests."""

import asyncio
import itertools
import os
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from cli.config import Config
from common.types import ArtifactRecord, NodeAddress, RemoteJobHandle
from replicator.artifact_cache import ArtifactCache
from replicator.exceptions import ArtifactNotFoundError, ResolutionError, TransferError
from replicator.node_client import partial_path
from replicator.orchestrator import ReplicationOrchestrator
from replicator.task_poller import TaskPoller


LOCAL = NodeAddress(host="localhost", port=8100, version="16.1.0", scheme="http")
NODE_A = NodeAddress(host="10.0.0.5", port=443, uuid="uuid-a", version="16.1.0")
NODE_B = NodeAddress(host="10.0.0.6", port=443, uuid="uuid-b", version="16.0.1")
NODE_OLD = NodeAddress(host="10.0.0.7", port=443, uuid="uuid-old", version="15.1.2")

_VERSION_ATTR = re.compile(r'versionDatetime="([^"]*)"')


class FakeCluster:
    """
    In-memory cluster implementing the node client interface.

    Jobs stay pending for `pending_polls` polls (or until their gate is
    set), exported files are small XML documents carrying the policy's
    version, and every call is appended to `calls`. Downloads stage through a
    '.part' file and, while `download_gate` is unset, stop after the
    first ten bytes.
    """

    def __init__(self, pending_polls: int = 1):
        self.policies: Dict[str, Dict[str, ArtifactRecord]] = {}
        self.exports: Dict[Tuple[str, str], bytes] = {}
        self.uploads: Dict[Tuple[str, str], bytes] = {}
        self.url_files: Dict[str, bytes] = {}
        self.jobs: Dict[str, dict] = {}
        self.calls: List[tuple] = []
        self.pending_polls = pending_polls
        self.fail_import: set = set()
        self.export_gate: Optional[asyncio.Event] = None
        self.upload_gate: Optional[asyncio.Event] = None
        self.download_gate: Optional[asyncio.Event] = None
        self.closed = False
        self._ids = itertools.count(1)

    def add_policy(self, node: NodeAddress, record: ArtifactRecord) -> None:
        self.policies.setdefault(node.key, {})[record.id] = record

    def policy_named(self, node: NodeAddress, name: str) -> Optional[ArtifactRecord]:
        for record in self.policies.get(node.key, {}).values():
            if record.name == name:
                return record
        return None

    def count(self, op: str) -> int:
        return sum(1 for call in self.calls if call[0] == op)

    async def close(self) -> None:
        self.closed = True

    async def list_artifacts(self, node: NodeAddress) -> List[ArtifactRecord]:
        self.calls.append(("list", node.key))
        return list(self.policies.get(node.key, {}).values())

    async def delete_artifact(self, node: NodeAddress, artifact_id: str) -> None:
        self.calls.append(("delete", node.key, artifact_id))
        if self.policies.get(node.key, {}).pop(artifact_id, None) is None:
            raise ArtifactNotFoundError(f"policy {artifact_id} not found on {node.key}")

    def _new_job(self, node: NodeAddress, kind: str, payload: dict, gate=None) -> RemoteJobHandle:
        job_id = f"job-{next(self._ids)}"
        self.jobs[job_id] = {"remaining": self.pending_polls, "payload": payload, "gate": gate, "deleted": False}
        return RemoteJobHandle(node=node, kind=kind, job_id=job_id)

    async def start_export(self, node: NodeAddress, artifact_id: str, file_name: str) -> RemoteJobHandle:
        self.calls.append(("export", node.key, artifact_id))
        record = self.policies[node.key][artifact_id]
        self.exports[(node.key, file_name)] = (
            f'<?xml version="1.0"?><policy name="{record.name}" '
            f'versionDatetime="{record.version_timestamp}"/>'
        ).encode()
        return self._new_job(node, "export", {"status": "COMPLETED"}, gate=self.export_gate)

    async def start_import(self, node: NodeAddress, file_name: str, artifact_name: str) -> RemoteJobHandle:
        self.calls.append(("import", node.key, artifact_name))
        if node.key in self.fail_import:
            return self._new_job(node, "import", {"status": "FAILURE", "result": {"message": "import rejected"}})

        content = self.uploads[(node.key, file_name)].decode()
        match = _VERSION_ATTR.search(content)
        new_id = f"imported-{next(self._ids)}"
        self.add_policy(node, ArtifactRecord(
            id=new_id,
            name=artifact_name,
            enforcement_mode="blocking",
            path=f"/Common/{artifact_name}",
            active=False,
            version_timestamp=match.group(1) if match else None,
        ))
        link = f"https://localhost/mgmt/tm/asm/policies/{new_id}"
        return self._new_job(node, "import", {"status": "COMPLETED", "result": {"policyReference": {"link": link}}})

    async def start_apply(self, node: NodeAddress, artifact_id: str) -> RemoteJobHandle:
        self.calls.append(("apply", node.key, artifact_id))
        record = self.policies[node.key][artifact_id]
        self.policies[node.key][artifact_id] = ArtifactRecord(
            id=record.id,
            name=record.name,
            enforcement_mode=record.enforcement_mode,
            path=record.path,
            active=True,
            version_timestamp=record.version_timestamp,
        )
        return self._new_job(node, "apply", {"status": "COMPLETED"})

    async def get_job(self, handle: RemoteJobHandle) -> dict:
        job = self.jobs[handle.job_id]
        if job["gate"] is not None and not job["gate"].is_set():
            return {"status": "STARTED"}
        if job["remaining"] > 0:
            job["remaining"] -= 1
            return {"status": "STARTED"}
        return job["payload"]

    async def delete_job(self, handle: RemoteJobHandle) -> None:
        self.jobs[handle.job_id]["deleted"] = True

    async def _write_staged(self, destination: Path, content: bytes) -> int:
        part = partial_path(destination)
        with open(part, 'wb') as f:
            f.write(content[:10])
            if self.download_gate is not None:
                f.flush()
                await self.download_gate.wait()
            f.write(content[10:])
        os.replace(part, destination)
        return len(content)

    async def download_file(self, node: NodeAddress, file_name: str, destination: Path) -> int:
        self.calls.append(("download", node.key, file_name))
        content = self.exports.get((node.key, file_name))
        if content is None:
            raise TransferError(f"download of {file_name} returned status 404")
        return await self._write_staged(destination, content)

    async def download_url(self, url: str, destination: Path) -> int:
        self.calls.append(("download_url", url))
        content = self.url_files.get(url)
        if content is None:
            raise TransferError(f"download of {url} returned status 404")
        return await self._write_staged(destination, content)

    async def upload_file(self, node: NodeAddress, source: Path, file_name: str, chunk_size: int = 512000) -> int:
        self.calls.append(("upload", node.key, file_name))
        if self.upload_gate is not None:
            await self.upload_gate.wait()
        content = source.read_bytes()
        self.uploads[(node.key, file_name)] = content
        return len(content)


class FakeResolver:
    """Resolves host, machine id or host:port against a fixed set of nodes."""

    def __init__(self, local: NodeAddress, nodes: List[NodeAddress]):
        self.local_node = local
        self.nodes = nodes

    async def resolve(self, identifier: Optional[str]) -> NodeAddress:
        if not identifier or identifier == "localhost":
            return self.local_node
        for node in self.nodes:
            if identifier in (node.host, node.uuid, node.key):
                return node
        raise ResolutionError(f"target {identifier} is not a trusted device.")

    async def close(self) -> None:
        pass


def make_policy(policy_id: str = "p1", name: str = "web_policy", version: str = "2024-05-01T10:00:00Z") -> ArtifactRecord:
    return ArtifactRecord(
        id=policy_id,
        name=name,
        enforcement_mode="blocking",
        path=f"/Common/{name}",
        active=True,
        version_timestamp=version,
    )


@pytest.fixture
def cluster():
    """Fake cluster with one policy on the local node."""
    fake = FakeCluster()
    fake.add_policy(LOCAL, make_policy())
    return fake


@pytest.fixture
def resolver():
    return FakeResolver(LOCAL, [NODE_A, NODE_B, NODE_OLD])


@pytest.fixture
def staging_cache(tmp_path):
    cache = ArtifactCache(tmp_path / "staging")
    cache.ensure_directory()
    return cache


@pytest.fixture
def orchestrator(cluster, resolver, staging_cache):
    """Orchestrator over the fake cluster with fast polling."""
    return ReplicationOrchestrator(
        node_client=cluster,
        resolver=resolver,
        cache=staging_cache,
        poller=TaskPoller(cluster, poll_interval=0.01, default_timeout=5),
        chunk_size=16,
        job_timeouts={"export": 5, "import": 5, "apply": 5},
    )


@pytest.fixture
def temp_config_dir(tmp_path):
    """
    Create temporary config directory.

    Returns:
        Path to temporary .policy-replicator directory
    """
    config_dir = tmp_path / '.policy-replicator'
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def temp_config(temp_config_dir):
    """
    Create temporary config instance.

    Returns:
        Config instance with temp config file
    """
    return Config(temp_config_dir / 'config.json')
