"""
Convoy No-op Connection

Used in simulate mode: never touches a real host. Every command succeeds
with empty output.
"""

import logging
from typing import TYPE_CHECKING, Optional

from convoy.connections.base import LOCALHOST, CommandResult, Connection, ConnectionFactory
from convoy.inventory.host import Host, OSType

if TYPE_CHECKING:
    from convoy.engine.context import PlaybookContext
    from convoy.tasks.request import TaskRequest

logger = logging.getLogger(__name__)


class NoConnection(Connection):
    """Simulated transport."""

    async def connect(self) -> None:
        self.host.os_type = OSType.LINUX

    async def close(self) -> None:
        pass

    async def run_command(
        self,
        command: str,
        request: Optional["TaskRequest"] = None,
        forward: bool = False,
    ) -> CommandResult:
        logger.debug("simulated exec on %s: %s", self.host.name, command)
        return CommandResult(cmd=command, out="", rc=0)

    async def copy_file(self, src: str, dest: str) -> None:
        logger.debug("simulated copy on %s: %s -> %s", self.host.name, src, dest)

    async def write_data(self, data: str, dest: str) -> None:
        logger.debug("simulated write on %s: %s", self.host.name, dest)

    async def whoami(self) -> str:
        return "root"


class NoFactory(ConnectionFactory):
    """Hands out simulated connections, including for localhost."""

    async def get_connection(self, context: "PlaybookContext", host: Host) -> Connection:
        async def opener() -> Connection:
            connection = NoConnection(host)
            await connection.connect()
            return connection

        return await context.connection_cache.get_or_connect(host.name, opener)

    async def get_local_connection(self, context: "PlaybookContext") -> Connection:
        return await self.get_connection(context, Host(LOCALHOST))
