"""
Convoy Connection Cache

Per-run cache of live connections keyed by host name. Guarantees at most one
connection object per host: concurrent requests for the same host wait on a
per-host lock while the first one connects.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from convoy.connections.base import Connection

logger = logging.getLogger(__name__)


class ConnectionCache:
    """Cached connections for one PlaybookContext."""

    def __init__(self):
        self._connections: Dict[str, Connection] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def has(self, host_name: str) -> bool:
        return host_name in self._connections

    def get(self, host_name: str) -> Optional[Connection]:
        return self._connections.get(host_name)

    def add(self, host_name: str, connection: Connection) -> None:
        self._connections[host_name] = connection

    def remove(self, host_name: str) -> Optional[Connection]:
        return self._connections.pop(host_name, None)

    def size(self) -> int:
        return len(self._connections)

    def host_names(self) -> List[str]:
        return list(self._connections)

    async def get_or_connect(
        self,
        host_name: str,
        opener: Callable[[], Awaitable[Connection]],
    ) -> Connection:
        """
        Return the cached connection for a host, opening it on first use.

        Args:
            host_name: Cache key
            opener: Coroutine factory returning a connected Connection

        Raises:
            ConnectionError: If the opener fails; nothing is cached
        """
        existing = self._connections.get(host_name)
        if existing is not None:
            return existing

        lock = self._locks.setdefault(host_name, asyncio.Lock())
        async with lock:
            existing = self._connections.get(host_name)
            if existing is not None:
                return existing
            connection = await opener()
            self._connections[host_name] = connection
            logger.debug("cached %s connection for %s", connection.connection_type, host_name)
            return connection

    async def clear(self) -> None:
        """Close and drop every cached connection."""
        # A shared connection may be cached under several names
        unique: Dict[int, Connection] = {}
        for connection in self._connections.values():
            unique[id(connection)] = connection
        self._connections.clear()
        self._locks.clear()

        for connection in unique.values():
            try:
                await connection.close()
            except Exception as e:
                logger.warning("error closing connection to %s: %s", connection.host.name, e)
