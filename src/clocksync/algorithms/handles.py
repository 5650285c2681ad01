"""Node handles: how algorithms reach the nodes they query."""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

import aiohttp

from clocksync.algorithms.base import NodeHandle
from clocksync.config import QUERY_TIMEOUT
from clocksync.core.identity import Role
from clocksync.errors import TransportFailure

if TYPE_CHECKING:
    from clocksync.core.node import NodeAgent

logger = logging.getLogger(__name__)


class LocalNodeHandle(NodeHandle):
    """Handle on a NodeAgent living in this process"""

    def __init__(self, agent: "NodeAgent"):
        self._agent = agent

    @property
    def agent(self) -> "NodeAgent":
        return self._agent

    @property
    def node_id(self) -> str:
        return self._agent.node_id

    @property
    def name(self) -> str:
        return self._agent.name

    @property
    def role(self) -> Role:
        return self._agent.role

    async def fetch_time(self) -> int:
        return self._agent.current_time()


class RemoteNodeHandle(NodeHandle):
    """
    Handle on a node reachable through its operator API (GET /time).

    The role is the one reported when the handle was built with connect();
    a remote role flip is not seen until a new handle is created.
    """

    def __init__(self, base_url: str, node_id: str, name: str, role: Role, *,
                 session: Optional[aiohttp.ClientSession] = None,
                 timeout: Optional[float] = QUERY_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self._node_id = node_id
        self._name = name
        self._role = role
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    @property
    def node_id(self) -> str:
        return self._node_id

    @property
    def name(self) -> str:
        return self._name

    @property
    def role(self) -> Role:
        return self._role

    @staticmethod
    async def _get_json(session: aiohttp.ClientSession, url: str,
                        timeout: aiohttp.ClientTimeout) -> Dict[str, Any]:
        async with session.get(url, timeout=timeout) as resp:
            if resp.status != 200:
                raise TransportFailure(f"GET {url} answered HTTP {resp.status}")
            return await resp.json()

    @classmethod
    async def _fetch(cls, base_url: str, session: Optional[aiohttp.ClientSession],
                     timeout: aiohttp.ClientTimeout) -> Dict[str, Any]:
        url = f"{base_url.rstrip('/')}/time"
        if session is not None:
            return await cls._get_json(session, url, timeout)
        async with aiohttp.ClientSession(timeout=timeout) as owned:
            return await cls._get_json(owned, url, timeout)

    async def fetch_time(self) -> int:
        data = await self._fetch(self.base_url, self._session, self._timeout)
        return int(data["time_ms"])

    @classmethod
    async def connect(cls, base_url: str, *, session: Optional[aiohttp.ClientSession] = None,
                      timeout: Optional[float] = QUERY_TIMEOUT) -> "RemoteNodeHandle":
        """Build a handle by asking the remote node who it is."""
        client_timeout = aiohttp.ClientTimeout(total=timeout)
        try:
            data = await cls._fetch(base_url, session, client_timeout)
            handle = cls(
                base_url,
                node_id=data["node_id"],
                name=data.get("name", data["node_id"]),
                role=Role.parse(data["role"]),
                session=session,
                timeout=timeout,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, KeyError, ValueError) as e:
            raise TransportFailure(f"Could not identify node at {base_url}: {e}") from e
        logger.debug(f"Connected to remote node {handle.name} ({handle.role.value}) at {base_url}")
        return handle
