"""
Replication pipeline orchestration.

A replication request moves through an explicit state machine:

    REQUESTED -> EXPORTING -> DOWNLOADING -> [REMOVING ->] UPLOADING
              -> IMPORTING -> APPLYING -> AVAILABLE

with ERROR reachable from every non-terminal state. Each state has one
handler performing that stage's work and returning the next state; a
single loop drives the handlers and publishes every transition to the
request status registry and to registered listeners.
"""

import asyncio
import hashlib
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set
from urllib.parse import urlparse

from common.constants import (
    UPLOAD_CHUNK_SIZE_BYTES,
    EXPORT_TIMEOUT_SECONDS,
    IMPORT_TIMEOUT_SECONDS,
    APPLY_TIMEOUT_SECONDS,
)
from common.logging_config import get_logger
from common.types import (
    ArtifactRecord,
    INACTIVE_STATE,
    NodeAddress,
    OperationKey,
    ReplicationRequest,
    RequestKey,
    StageState,
)
from replicator.artifact_cache import ArtifactCache
from replicator.coalescer import Coalescer
from replicator.exceptions import (
    ArtifactNotFoundError,
    CacheCorruptionError,
    ConflictError,
    RemoteJobFailedError,
    ValidationError,
)
from replicator.request_registry import RequestStatusRegistry
from replicator.task_poller import TaskPoller, extract_artifact_id
from replicator.version_check import check_compatible

logger = get_logger(__name__)


TRANSITIONS: Dict[StageState, Set[StageState]] = {
    StageState.REQUESTED: {StageState.EXPORTING, StageState.DOWNLOADING, StageState.AVAILABLE},
    StageState.EXPORTING: {StageState.DOWNLOADING},
    StageState.DOWNLOADING: {StageState.REMOVING, StageState.UPLOADING, StageState.AVAILABLE},
    StageState.REMOVING: {StageState.UPLOADING},
    StageState.UPLOADING: {StageState.IMPORTING},
    StageState.IMPORTING: {StageState.APPLYING},
    StageState.APPLYING: {StageState.AVAILABLE},
}

DEFAULT_JOB_TIMEOUTS = {
    "export": EXPORT_TIMEOUT_SECONDS,
    "import": IMPORT_TIMEOUT_SECONDS,
    "apply": APPLY_TIMEOUT_SECONDS,
}

TransitionListener = Callable[[ReplicationRequest, StageState], None]


@dataclass
class PipelineContext:
    """Everything one pipeline run needs besides the orchestrator's collaborators."""
    key: RequestKey
    target: NodeAddress
    artifact: ArtifactRecord
    target_name: str
    staging_version: Optional[str]
    source: Optional[NodeAddress] = None
    source_url: Optional[str] = None
    stale_id: Optional[str] = None
    imported_id: Optional[str] = None

    @property
    def source_key(self) -> str:
        return self.source.key if self.source else self.source_url


def artifact_snapshot(record: ArtifactRecord, target: str) -> Dict[str, Any]:
    """Status-surface view of a policy already present on a node."""
    return {
        "id": record.id,
        "name": record.name,
        "enforcementMode": record.enforcement_mode,
        "state": StageState.AVAILABLE.value if record.active else INACTIVE_STATE,
        "path": record.path,
        "versionTimestamp": record.version_timestamp,
        "source": None,
        "target": target,
        "error": None,
    }


class ReplicationOrchestrator:
    """
    Drives replication requests through the pipeline.

    Owns the coalescer and the request status registry; each accepted
    request runs as its own asyncio task.
    """

    def __init__(
        self,
        node_client,
        resolver,
        cache: ArtifactCache,
        poller: Optional[TaskPoller] = None,
        coalescer: Optional[Coalescer] = None,
        registry: Optional[RequestStatusRegistry] = None,
        chunk_size: int = UPLOAD_CHUNK_SIZE_BYTES,
        job_timeouts: Optional[Dict[str, float]] = None,
        allowed_url_schemes=("http", "https")
    ):
        self.node_client = node_client
        self.resolver = resolver
        self.cache = cache
        self.poller = poller or TaskPoller(node_client)
        self.coalescer = coalescer or Coalescer()
        self.registry = registry or RequestStatusRegistry()
        self.chunk_size = chunk_size
        self.job_timeouts = {**DEFAULT_JOB_TIMEOUTS, **(job_timeouts or {})}
        self.allowed_url_schemes = tuple(allowed_url_schemes)

        self._tasks: Set[asyncio.Task] = set()
        self._listeners: List[TransitionListener] = []
        self._handlers = {
            StageState.REQUESTED: self._check_target,
            StageState.EXPORTING: self._export,
            StageState.DOWNLOADING: self._download,
            StageState.REMOVING: self._remove_stale,
            StageState.UPLOADING: self._upload,
            StageState.IMPORTING: self._import,
            StageState.APPLYING: self._apply,
        }

    def add_listener(self, listener: TransitionListener) -> None:
        """Register a callback invoked with (request, new_state) on every transition."""
        self._listeners.append(listener)

    @property
    def running(self) -> int:
        return len(self._tasks)

    # submission

    async def submit(
        self,
        source: Optional[str] = None,
        source_url: Optional[str] = None,
        targets: Optional[List[str]] = None,
        artifact_id: Optional[str] = None,
        artifact_name: Optional[str] = None,
        target_artifact_name: Optional[str] = None
    ) -> List[ReplicationRequest]:
        """
        Validate a replication request and start one pipeline per target.

        Every check runs before any pipeline starts, so a rejected
        submission leaves nothing behind.

        Args:
            source: Source node identifier (defaults to the local node)
            source_url: URL serving the policy file, instead of a source node
            targets: Target node identifiers (defaults to the local node)
            artifact_id: Policy id on the source
            artifact_name: Policy name on the source
            target_artifact_name: Name to import the policy under

        Returns:
            The accepted requests, all in state REQUESTED

        Raises:
            ValidationError: Missing or conflicting parameters
            ResolutionError: A node is not trusted
            ArtifactNotFoundError: The policy is not on the source
            VersionIncompatibleError: Source and a target differ in major version
            ConflictError: The policy is already tracked for a target
        """
        if source and source_url:
            raise ValidationError("specify either a source node or a source URL, not both")

        target_ids = list(dict.fromkeys(t for t in (targets or []) if t)) or [None]

        source_node = None
        if source_url:
            artifact = self._url_artifact(source_url, target_artifact_name or artifact_name)
            staging_version = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        else:
            if not artifact_id and not artifact_name:
                raise ValidationError("a policy id or policy name is required")
            source_node = await self.resolver.resolve(source)
            artifact = await self._locate_source_artifact(source_node, artifact_id, artifact_name)
            staging_version = artifact.version_timestamp

        target_nodes = [await self.resolver.resolve(target_id) for target_id in target_ids]
        for target_node in target_nodes:
            if source_node is not None:
                if target_node.key == source_node.key:
                    raise ValidationError(f"source and target are the same node {target_node.key}")
                check_compatible(source_node, target_node)
            key = RequestKey(target_node.key, artifact.id)
            if key in self.registry:
                existing = self.registry.get(key)
                raise ConflictError(
                    f"policy {artifact.id} is already tracked for {target_node.key} (state {existing.state.value})"
                )

        accepted = []
        for target_node in target_nodes:
            ctx = PipelineContext(
                key=RequestKey(target_node.key, artifact.id),
                target=target_node,
                artifact=artifact,
                target_name=target_artifact_name or artifact.name,
                staging_version=staging_version,
                source=source_node,
                source_url=source_url,
            )
            request = self.registry.create(ReplicationRequest(
                key=ctx.key,
                artifact_name=artifact.name,
                enforcement_mode=artifact.enforcement_mode,
                path=artifact.path,
                version_timestamp=artifact.version_timestamp,
                source=ctx.source_key,
                target_artifact_name=target_artifact_name,
            ))
            self._notify(request, StageState.REQUESTED)
            self._start(ctx)
            accepted.append(request)
            logger.info(f"Accepted replication of policy {artifact.name} ({artifact.id}) from {ctx.source_key} to {target_node.key}")

        return accepted

    def _url_artifact(self, source_url: str, name: Optional[str]) -> ArtifactRecord:
        scheme = urlparse(source_url).scheme.lower()
        if scheme not in self.allowed_url_schemes:
            raise ValidationError(
                f"URL scheme '{scheme}' is not allowed, use one of: {', '.join(self.allowed_url_schemes)}"
            )
        if not name:
            raise ValidationError("a target policy name is required when importing from a URL")
        digest = hashlib.sha1(source_url.encode('utf-8')).hexdigest()[:16]
        return ArtifactRecord(id=f"url-{digest}", name=name, path=source_url)

    async def _locate_source_artifact(
        self,
        source: NodeAddress,
        artifact_id: Optional[str],
        artifact_name: Optional[str]
    ) -> ArtifactRecord:
        for record in await self.node_client.list_artifacts(source):
            if artifact_id and record.id == artifact_id:
                return record
            if not artifact_id and artifact_name and record.name == artifact_name:
                return record
        raise ArtifactNotFoundError(f"source policy could not be found on {source.key}")

    def _start(self, ctx: PipelineContext) -> None:
        task = asyncio.create_task(self._run_pipeline(ctx))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # state machine

    async def _run_pipeline(self, ctx: PipelineContext) -> None:
        state = StageState.REQUESTED
        try:
            while not state.is_terminal:
                next_state = await self._handlers[state](ctx)
                self._transition(ctx, state, next_state)
                state = next_state
        except asyncio.CancelledError:
            self._fail(ctx, state, "replication was cancelled")
            raise
        except Exception as e:
            logger.error(
                f"Replication of policy {ctx.artifact.name} ({ctx.key.artifact_id}) to {ctx.target.key} "
                f"failed during {state.value}: {e}",
                exc_info=True
            )
            self._fail(ctx, state, str(e))

    def _transition(self, ctx: PipelineContext, current: StageState, next_state: StageState) -> None:
        if next_state not in TRANSITIONS[current]:
            raise RuntimeError(f"illegal transition {current.value} -> {next_state.value}")

        logger.info(
            f"Policy {ctx.artifact.name} ({ctx.key.artifact_id}) to {ctx.target.key}: "
            f"{current.value} -> {next_state.value}"
        )
        if next_state is StageState.AVAILABLE:
            request = self.registry.remove(ctx.key)
            if request is not None:
                request.state = StageState.AVAILABLE
                self._notify(request, next_state)
            logger.info(f"Policy {ctx.target_name} is available on {ctx.target.key}")
            return

        self._notify(self.registry.upsert(ctx.key, next_state), next_state)

    def _fail(self, ctx: PipelineContext, state: StageState, detail: str) -> None:
        request = self.registry.upsert(ctx.key, StageState.ERROR, error_detail=f"{state.value}: {detail}")
        self._notify(request, StageState.ERROR)

    def _notify(self, request: ReplicationRequest, state: StageState) -> None:
        for listener in self._listeners:
            try:
                listener(request, state)
            except Exception as e:
                logger.warning(f"Transition listener failed: {e}")

    # stage handlers

    async def _check_target(self, ctx: PipelineContext) -> StageState:
        if self._is_current_on_target(ctx, await self._find_on_target(ctx)):
            logger.info(
                f"Policy {ctx.target_name} version {ctx.artifact.version_timestamp} "
                f"is already on {ctx.target.key}"
            )
            return StageState.AVAILABLE
        if ctx.source_url:
            return StageState.DOWNLOADING
        return StageState.EXPORTING

    async def _export(self, ctx: PipelineContext) -> StageState:
        if self._staged(ctx):
            logger.info(f"Policy {ctx.artifact.id} is already staged, skipping export")
            return StageState.DOWNLOADING

        key = OperationKey("export", ctx.source.key, ctx.artifact.id, ctx.staging_version)
        await self.coalescer.coalesce(key, lambda: self._export_work(ctx))
        return StageState.DOWNLOADING

    async def _export_work(self, ctx: PipelineContext) -> Dict[str, Any]:
        file_name = self.cache.file_name(ctx.artifact.id, ctx.staging_version)
        handle = await self.node_client.start_export(ctx.source, ctx.artifact.id, file_name)
        return await self.poller.await_completion(handle, timeout=self.job_timeouts["export"])

    async def _download(self, ctx: PipelineContext) -> StageState:
        if self._staged(ctx):
            logger.info(f"Policy {ctx.artifact.id} is already staged, skipping download")
        else:
            key = OperationKey("download", ctx.source_key, ctx.artifact.id, ctx.staging_version)
            await self.coalescer.coalesce(key, lambda: self._download_work(ctx))

        existing = await self._find_on_target(ctx)
        if existing is None:
            return StageState.UPLOADING
        if self._is_current_on_target(ctx, existing):
            return StageState.AVAILABLE
        ctx.stale_id = existing.id
        return StageState.REMOVING

    async def _download_work(self, ctx: PipelineContext) -> None:
        destination = self.cache.resolve_path(ctx.artifact.id, ctx.staging_version)
        if ctx.source_url:
            await self.node_client.download_url(ctx.source_url, destination)
        else:
            file_name = self.cache.file_name(ctx.artifact.id, ctx.staging_version)
            await self.node_client.download_file(ctx.source, file_name, destination)
        self.cache.validate(ctx.artifact.id, ctx.staging_version)

    async def _remove_stale(self, ctx: PipelineContext) -> StageState:
        logger.info(f"Removing stale policy {ctx.stale_id} named {ctx.target_name} from {ctx.target.key}")
        try:
            await self.node_client.delete_artifact(ctx.target, ctx.stale_id)
        except ArtifactNotFoundError:
            logger.info(f"Stale policy {ctx.stale_id} was already gone from {ctx.target.key}")
        return StageState.UPLOADING

    async def _upload(self, ctx: PipelineContext) -> StageState:
        path = self.cache.resolve_path(ctx.artifact.id, ctx.staging_version)
        file_name = path.name
        key = OperationKey("upload", ctx.target.key, ctx.artifact.id, ctx.staging_version)
        await self.coalescer.coalesce(
            key,
            lambda: self.node_client.upload_file(ctx.target, path, file_name, self.chunk_size)
        )
        return StageState.IMPORTING

    async def _import(self, ctx: PipelineContext) -> StageState:
        file_name = self.cache.file_name(ctx.artifact.id, ctx.staging_version)
        handle = await self.node_client.start_import(ctx.target, file_name, ctx.target_name)
        payload = await self.poller.await_completion(handle, timeout=self.job_timeouts["import"])

        imported_id = extract_artifact_id(payload)
        if not imported_id:
            existing = await self._find_on_target(ctx)
            imported_id = existing.id if existing else None
        if not imported_id:
            raise RemoteJobFailedError(
                f"import on {ctx.target.key} completed but no policy named {ctx.target_name} exists",
                payload=payload
            )

        ctx.imported_id = imported_id
        if imported_id != ctx.key.artifact_id:
            new_key = RequestKey(ctx.target.key, imported_id)
            self.registry.rekey(ctx.key, new_key)
            ctx.key = new_key
        return StageState.APPLYING

    async def _apply(self, ctx: PipelineContext) -> StageState:
        handle = await self.node_client.start_apply(ctx.target, ctx.imported_id)
        await self.poller.await_completion(handle, timeout=self.job_timeouts["apply"])
        return StageState.AVAILABLE

    # helpers

    def _staged(self, ctx: PipelineContext) -> bool:
        if not self.cache.exists(ctx.artifact.id, ctx.staging_version):
            return False
        try:
            self.cache.validate(ctx.artifact.id, ctx.staging_version)
        except CacheCorruptionError as e:
            logger.warning(f"Discarded corrupt staged file for {ctx.artifact.id}: {e}")
            return False
        self.cache.refresh(ctx.artifact.id, ctx.staging_version)
        return True

    async def _find_on_target(self, ctx: PipelineContext) -> Optional[ArtifactRecord]:
        for record in await self.node_client.list_artifacts(ctx.target):
            if record.name == ctx.target_name:
                return record
        return None

    def _is_current_on_target(self, ctx: PipelineContext, existing: Optional[ArtifactRecord]) -> bool:
        if existing is None or ctx.source_url:
            return False
        return bool(existing.version_timestamp) and existing.version_timestamp == ctx.artifact.version_timestamp

    # status and deletion

    async def status(self, target: Optional[str], name_prefix: Optional[str] = None):
        """
        Tracked requests and live policies for a target node.

        Tracked requests take precedence over live policies with the same id.

        Returns:
            List of status records, or the first record whose name starts
            with name_prefix when one is given

        Raises:
            ResolutionError: The target is not trusted
            ArtifactNotFoundError: No record matches name_prefix
        """
        node = await self.resolver.resolve(target)
        tracked = self.registry.for_target(node.key)
        live = await self.node_client.list_artifacts(node)

        tracked_ids = {request.artifact_id for request in tracked}
        records = [request.snapshot() for request in tracked]
        records.extend(
            artifact_snapshot(record, node.key) for record in live if record.id not in tracked_ids
        )

        if name_prefix:
            for record in records:
                if record["name"] and record["name"].startswith(name_prefix):
                    return record
            raise ArtifactNotFoundError(f"no policy with name starting with {name_prefix} found.")
        return records

    async def delete(
        self,
        target: Optional[str],
        artifact_id: Optional[str] = None,
        artifact_name: Optional[str] = None
    ) -> str:
        """
        Remove a policy from a target, or clear its failed replication.

        Returns:
            Human-readable outcome message

        Raises:
            ValidationError: Neither id nor name given
            ConflictError: The policy's replication is still in flight
            ArtifactNotFoundError: The policy is neither tracked nor on the target
        """
        if not artifact_id and not artifact_name:
            raise ValidationError("a policy id or policy name is required")

        node = await self.resolver.resolve(target)
        if artifact_id:
            request = self.registry.get(RequestKey(node.key, artifact_id))
        else:
            request = self.registry.find_by_name(node.key, artifact_name)

        if request is not None:
            if request.state is not StageState.ERROR:
                raise ConflictError(
                    f"replication of policy {request.artifact_id} to {node.key} is in flight "
                    f"(state {request.state.value})"
                )
            self.registry.remove(request.key)
            logger.info(f"Cleared failed replication of policy {request.artifact_id} on {node.key}")
            return f"failed replication of policy {request.artifact_id} cleared on target {node.key}"

        for record in await self.node_client.list_artifacts(node):
            if (artifact_id and record.id == artifact_id) or (not artifact_id and record.name == artifact_name):
                await self.node_client.delete_artifact(node, record.id)
                return f"policy removed on target {node.key}"

        raise ArtifactNotFoundError(f"policy could not be found on {node.key}")

    # lifecycle

    async def wait_idle(self) -> None:
        """Wait until every running pipeline has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel running pipelines; their requests end in ERROR."""
        for task in list(self._tasks):
            task.cancel()
        await self.wait_idle()
