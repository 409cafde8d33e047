"""Resolution of node identifiers (address, machine id or host:port) to trusted nodes."""

import asyncio
from typing import Any, Dict, List, Optional

import aiohttp

from common.constants import DEVICE_GROUP_PREFIX, DEVICE_STATE_UNDISCOVERED, LOCAL_NODE_HOST, REMOTE_NODE_PORT
from common.logging_config import get_logger
from common.types import NodeAddress
from replicator.exceptions import NodeUnavailableError, ResolutionError

logger = get_logger(__name__)

DEVICE_GROUPS_PATH = "/mgmt/shared/resolver/device-groups"


class NodeResolver:
    """
    Maps node identifiers to reachable addresses using the local trust store.

    The trust store is the set of device groups named with the trust prefix;
    a device in such a group is trusted once it has been discovered.
    """

    def __init__(
        self,
        local_node: NodeAddress,
        local_auth: aiohttp.BasicAuth,
        timeout: float = 10.0
    ):
        self.local_node = local_node
        self.local_auth = local_auth
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def resolve(self, identifier: Optional[str]) -> NodeAddress:
        """
        Resolve a node identifier.

        An empty identifier or 'localhost' names the local node.

        Raises:
            ResolutionError: If the identifier does not name a trusted node
        """
        if not identifier or identifier == LOCAL_NODE_HOST:
            return self.local_node

        for node in await self.list_trusted_nodes():
            if identifier in (node.host, node.uuid, node.key):
                return node

        raise ResolutionError(f"target {identifier} is not a trusted device.")

    async def list_trusted_nodes(self) -> List[NodeAddress]:
        """
        All trusted devices across the trust device groups.

        Raises:
            NodeUnavailableError: If the local trust store cannot be queried
        """
        body = await self._get(DEVICE_GROUPS_PATH)
        groups = [
            group["groupName"]
            for group in body.get("items", [])
            if group.get("groupName", "").startswith(DEVICE_GROUP_PREFIX)
        ]
        if not groups:
            logger.warning("No trust device groups found")
            return []

        results = await asyncio.gather(
            *(self._get(f"{DEVICE_GROUPS_PATH}/{group}/devices") for group in groups)
        )

        nodes = []
        for devices_body in results:
            for device in devices_body.get("items", []):
                if "mcpDeviceName" not in device and device.get("state") != DEVICE_STATE_UNDISCOVERED:
                    continue
                nodes.append(NodeAddress(
                    host=device["address"],
                    port=int(device.get("httpsPort") or REMOTE_NODE_PORT),
                    uuid=device.get("machineId"),
                    version=device.get("version"),
                    state=device.get("state"),
                    scheme="https",
                ))
        return nodes

    async def _get(self, path: str) -> Dict[str, Any]:
        session = self._ensure_session()
        url = f"{self.local_node.base_url}{path}"
        try:
            async with session.get(url, auth=self.local_auth) as resp:
                if resp.status >= 400:
                    raise NodeUnavailableError(f"trust store query {path} returned status {resp.status}")
                return await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            logger.error(f"Could not query trust store {path}: {e}")
            raise NodeUnavailableError(f"trust store on {self.local_node.key} is unreachable: {e}") from e
