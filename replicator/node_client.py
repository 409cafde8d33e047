"""HTTP client for the policy REST protocol spoken by trusted nodes."""

import asyncio
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiohttp

from common.constants import ARTIFACT_SELECT_FIELDS, DOWNLOAD_PIECE_SIZE_BYTES, UPLOAD_CHUNK_SIZE_BYTES
from common.logging_config import get_logger
from common.types import ArtifactRecord, NodeAddress, RemoteJobHandle
from replicator.auth import TokenProvider
from replicator.exceptions import (
    ArtifactNotFoundError,
    NodeUnavailableError,
    RemoteRequestError,
    TransferError,
)

logger = get_logger(__name__)

POLICIES_PATH = "/mgmt/tm/asm/policies"
TASKS_PATH = "/mgmt/tm/asm/tasks"
DOWNLOADS_PATH = "/mgmt/tm/asm/file-transfer/downloads"
UPLOADS_PATH = "/mgmt/tm/asm/file-transfer/uploads"


def partial_path(destination: Path) -> Path:
    """In-progress download file next to its final path."""
    return destination.with_name(destination.name + ".part")


def policy_link(artifact_id: str) -> Dict[str, str]:
    """Node-local reference to a policy, as job bodies expect it."""
    return {"link": f"http://localhost{POLICIES_PATH}/{artifact_id}"}


class NodeClient:
    """
    aiohttp client for artifact listing, remote jobs and file transfer.

    Local node requests use basic auth; remote node requests carry a token
    obtained from the token provider for every request.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        local_auth: aiohttp.BasicAuth,
        verify_tls: bool = False,
        request_timeout: float = 30.0
    ):
        self.token_provider = token_provider
        self.local_auth = local_auth
        self.verify_tls = verify_tls
        self.request_timeout = request_timeout
        self._session: Optional[aiohttp.ClientSession] = None

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=self.request_timeout)
            )
        return self._session

    async def close(self) -> None:
        """Close the HTTP session and the token provider."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
        await self.token_provider.close()

    async def _auth_kwargs(self, node: NodeAddress) -> Dict[str, Any]:
        if node.is_local:
            return {"auth": self.local_auth}
        return {"params": await self.token_provider.get_query_params(node)}

    async def _request_json(
        self,
        method: str,
        node: NodeAddress,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None
    ) -> Any:
        """
        Send one JSON request to a node.

        Raises:
            NodeUnavailableError: If the node refuses the connection
            RemoteRequestError: If the node answers with status >= 400
        """
        session = self._ensure_session()
        kwargs = await self._auth_kwargs(node)
        if params:
            kwargs["params"] = {**kwargs.get("params", {}), **params}

        url = f"{node.base_url}{path}"
        try:
            async with session.request(
                method,
                url,
                json=json,
                ssl=self.verify_tls,
                timeout=aiohttp.ClientTimeout(total=self.request_timeout),
                **kwargs
            ) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    raise RemoteRequestError(
                        f"{method} {path} on {node.key} returned status {resp.status}: {text[:200]}",
                        status=resp.status
                    )
                if resp.status == 204:
                    return {}
                return await resp.json(content_type=None)
        except aiohttp.ClientConnectorError as e:
            raise NodeUnavailableError(
                f"policy module is not reachable on {node.key}: {e}"
            ) from e
        except aiohttp.ClientError as e:
            raise RemoteRequestError(f"{method} {path} on {node.key} failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise NodeUnavailableError(f"{method} {path} on {node.key} timed out") from e

    async def list_artifacts(self, node: NodeAddress) -> List[ArtifactRecord]:
        """
        Policies currently present on a node.

        Raises:
            RemoteRequestError: If the response carries no item list
        """
        body = await self._request_json(
            "GET", node, POLICIES_PATH, params={"$select": ARTIFACT_SELECT_FIELDS}
        )
        if not isinstance(body, dict) or "items" not in body:
            raise RemoteRequestError(f"policies request to {node.key} did not return a list of policies: {body}")

        return [
            ArtifactRecord(
                id=item["id"],
                name=item.get("name", ""),
                enforcement_mode=item.get("enforcementMode"),
                path=item.get("fullPath"),
                active=item.get("active", True),
                version_timestamp=item.get("versionDatetime"),
            )
            for item in body["items"]
        ]

    async def delete_artifact(self, node: NodeAddress, artifact_id: str) -> None:
        """
        Remove a policy from a node.

        Raises:
            ArtifactNotFoundError: If the node does not hold the policy
        """
        try:
            await self._request_json("DELETE", node, f"{POLICIES_PATH}/{artifact_id}")
        except RemoteRequestError as e:
            if e.status == 404:
                raise ArtifactNotFoundError(f"policy {artifact_id} not found on {node.key}") from e
            raise
        logger.info(f"Deleted policy {artifact_id} on {node.key}")

    async def submit_job(self, node: NodeAddress, kind: str, body: Dict[str, Any]) -> RemoteJobHandle:
        """
        Start an asynchronous job ('export', 'import' or 'apply') on a node.

        Raises:
            RemoteRequestError: If the node does not return a job id
        """
        response = await self._request_json("POST", node, f"{TASKS_PATH}/{kind}-policy", json=body)
        if not isinstance(response, dict) or not response.get("id"):
            raise RemoteRequestError(f"policy {kind} request to {node.key} did not return a task ID: {response}")

        handle = RemoteJobHandle(node=node, kind=kind, job_id=str(response["id"]))
        logger.info(f"Started {kind} job {handle.job_id} on {node.key}")
        return handle

    async def start_export(self, node: NodeAddress, artifact_id: str, file_name: str) -> RemoteJobHandle:
        return await self.submit_job(node, "export", {
            "filename": file_name,
            "minimal": True,
            "policyReference": policy_link(artifact_id),
        })

    async def start_import(self, node: NodeAddress, file_name: str, artifact_name: str) -> RemoteJobHandle:
        return await self.submit_job(node, "import", {
            "filename": file_name,
            "name": artifact_name,
        })

    async def start_apply(self, node: NodeAddress, artifact_id: str) -> RemoteJobHandle:
        return await self.submit_job(node, "apply", {
            "policyReference": policy_link(artifact_id),
        })

    async def get_job(self, handle: RemoteJobHandle) -> Dict[str, Any]:
        return await self._request_json("GET", handle.node, handle.poll_path)

    async def delete_job(self, handle: RemoteJobHandle) -> None:
        await self._request_json("DELETE", handle.node, handle.poll_path)

    async def download_file(self, node: NodeAddress, file_name: str, destination: Path) -> int:
        """
        Stream an exported file from a node's download area into destination.

        Returns:
            Number of bytes written

        Raises:
            TransferError: On network or disk failure; the partial file is removed
        """
        kwargs = await self._auth_kwargs(node)
        url = f"{node.base_url}{DOWNLOADS_PATH}/{file_name}"
        logger.info(f"Downloading {file_name} from {node.key}")
        return await self._stream_to_file(url, destination, **kwargs)

    async def download_url(self, url: str, destination: Path) -> int:
        """
        Stream a policy file served at an arbitrary URL, following at most one redirect.
        """
        logger.info(f"Downloading policy file from {url}")
        return await self._stream_to_file(url, destination, max_redirects=1)

    async def _stream_to_file(self, url: str, destination: Path, **kwargs) -> int:
        """
        Stream url into a sibling '.part' file and move it onto destination once complete.

        destination therefore only ever holds a finished download.
        """
        session = self._ensure_session()
        destination.parent.mkdir(parents=True, exist_ok=True)
        part_path = partial_path(destination)
        written = 0
        try:
            async with session.get(url, ssl=self.verify_tls, **kwargs) as resp:
                if resp.status >= 400:
                    raise TransferError(f"download of {url} returned status {resp.status}")
                with open(part_path, 'wb') as f:
                    async for piece in resp.content.iter_chunked(DOWNLOAD_PIECE_SIZE_BYTES):
                        f.write(piece)
                        written += len(piece)
            os.replace(part_path, destination)
        except TransferError:
            self._remove_partial(part_path)
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            self._remove_partial(part_path)
            raise TransferError(f"download of {url} failed: {e}") from e

        logger.info(f"Downloaded {written} bytes to {destination.name}")
        return written

    def _remove_partial(self, path: Path) -> None:
        try:
            path.unlink()
            logger.warning(f"Removed partial download {path.name}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Failed to remove partial download {path.name}: {e}")

    async def upload_file(
        self,
        node: NodeAddress,
        source: Path,
        file_name: str,
        chunk_size: int = UPLOAD_CHUNK_SIZE_BYTES
    ) -> int:
        """
        Upload a staged file to a node's upload area in byte-range chunks.

        Each chunk carries 'Content-Range: start-end/total' and, for remote
        nodes, a freshly exchanged token. Any failed chunk fails the upload.

        Returns:
            Total bytes uploaded

        Raises:
            TransferError: If the file cannot be read or a chunk is rejected
        """
        session = self._ensure_session()
        try:
            total = source.stat().st_size
        except OSError as e:
            raise TransferError(f"staged file {source.name} is not readable: {e}") from e
        if total == 0:
            raise TransferError(f"staged file {source.name} is empty")

        try:
            staged = open(source, 'rb')
        except OSError as e:
            raise TransferError(f"staged file {source.name} is not readable: {e}") from e

        url = f"{node.base_url}{UPLOADS_PATH}/{file_name}"
        start = 0
        with staged as f:
            while start < total:
                end = min(start + chunk_size, total) - 1
                f.seek(start)
                data = f.read(end - start + 1)
                headers = {
                    "Content-Type": "application/octet-stream",
                    "Content-Range": f"{start}-{end}/{total}",
                }
                kwargs = await self._auth_kwargs(node)
                logger.info(f"Uploading {file_name} to {node.key} {start}-{end}/{total}")
                try:
                    async with session.post(
                        url, data=data, headers=headers, ssl=self.verify_tls, **kwargs
                    ) as resp:
                        if resp.status >= 400:
                            raise TransferError(
                                f"upload part start: {start} end: {end} to {node.key} returned status {resp.status}"
                            )
                except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                    raise TransferError(f"upload part start: {start} end: {end} to {node.key} failed: {e}") from e
                start = end + 1

        return total
