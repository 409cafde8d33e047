"""Authentication for node requests: local basic auth and token exchange for remote nodes."""

from typing import Dict, Optional
from urllib.parse import parse_qsl

import aiohttp

from common.logging_config import get_logger
from common.types import NodeAddress
from replicator.exceptions import NodeUnavailableError, RemoteRequestError

logger = get_logger(__name__)


def local_basic_auth(credentials: str) -> aiohttp.BasicAuth:
    """
    Build basic auth for the local node from 'user:password'.

    Args:
        credentials: Credentials string (password may be empty, e.g. 'admin:')
    """
    login, _, password = credentials.partition(":")
    return aiohttp.BasicAuth(login, password)


class TokenProvider:
    """
    Obtains per-request auth tokens for trusted remote nodes from the local node.

    Tokens are not cached: every call performs a fresh exchange.
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

    async def get_query_params(self, node: NodeAddress) -> Dict[str, str]:
        """
        Query parameters authorizing one request to node.

        Returns:
            Empty dict for the local node, otherwise the token parameters

        Raises:
            NodeUnavailableError: If the local token endpoint is unreachable
            RemoteRequestError: If the exchange does not yield a token
        """
        if node.is_local:
            return {}

        session = self._ensure_session()
        url = f"{self.local_node.base_url}/shared/token"
        try:
            async with session.post(url, json={"address": node.host}, auth=self.local_auth) as resp:
                if resp.status >= 400:
                    raise RemoteRequestError(
                        f"token exchange for {node.host} returned status {resp.status}",
                        status=resp.status
                    )
                body = await resp.json(content_type=None)
        except aiohttp.ClientConnectionError as e:
            raise NodeUnavailableError(f"token endpoint on {self.local_node.key} is unreachable: {e}") from e

        query = body.get("queryParam") if isinstance(body, dict) else None
        if not query:
            raise RemoteRequestError(f"token exchange for {node.host} returned no token")

        logger.debug(f"Obtained auth token for {node.host}")
        return dict(parse_qsl(query))
