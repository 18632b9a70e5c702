"""
Convoy Local Connection

Execute commands on the control machine. Every host routed here shares the
single "localhost" session in the connection cache.
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from convoy.connections.base import LOCALHOST, CommandResult, Connection, ConnectionFactory
from convoy.engine.errors import ConnectionError
from convoy.inventory.host import Host
from convoy.logging import TRACE

if TYPE_CHECKING:
    from convoy.engine.context import PlaybookContext
    from convoy.inventory.inventory import Inventory
    from convoy.tasks.request import TaskRequest

logger = logging.getLogger(__name__)


class LocalConnection(Connection):
    """Runs commands through a local shell."""

    def __init__(self, host: Host):
        super().__init__(host)
        self._connected = False

    async def connect(self) -> None:
        if self._connected:
            return
        await self.detect_os()
        self._connected = True

    async def close(self) -> None:
        """Nothing to tear down for local execution."""
        self._connected = False

    async def run_command(
        self,
        command: str,
        request: Optional["TaskRequest"] = None,
        forward: bool = False,
    ) -> CommandResult:
        logger.log(TRACE, "local exec: %s", command)
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        stdout_bytes, _ = await process.communicate()
        return CommandResult(
            cmd=command,
            out=stdout_bytes.decode('utf-8', errors='replace'),
            rc=process.returncode or 0,
        )

    async def copy_file(self, src: str, dest: str) -> None:
        dest_path = Path(dest)
        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, dest_path)
        except OSError as e:
            raise ConnectionError(self.host.name, f"copy to {dest} failed: {e}",
                                  connection_type=self.connection_type)

    async def write_data(self, data: str, dest: str) -> None:
        dest_path = Path(dest)
        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            dest_path.write_text(data, encoding='utf-8')
        except OSError as e:
            raise ConnectionError(self.host.name, f"write to {dest} failed: {e}",
                                  connection_type=self.connection_type)


async def open_local_connection(context: "PlaybookContext", inventory: "Inventory") -> Connection:
    """Return the run's shared local connection, creating it on first use."""
    async def opener() -> Connection:
        host = inventory.hosts.get(LOCALHOST) or Host(LOCALHOST)
        connection = LocalConnection(host)
        await connection.connect()
        return connection

    return await context.connection_cache.get_or_connect(LOCALHOST, opener)


class LocalFactory(ConnectionFactory):
    """Routes every host to the shared local connection."""

    def __init__(self, inventory: "Inventory"):
        self.inventory = inventory

    async def get_connection(self, context: "PlaybookContext", host: Host) -> Connection:
        connection = await open_local_connection(context, self.inventory)
        if host.name != LOCALHOST:
            # Run facts for inventory hosts reflect the control machine
            host.os_type = connection.host.os_type
        return connection

    async def get_local_connection(self, context: "PlaybookContext") -> Connection:
        return await open_local_connection(context, self.inventory)
