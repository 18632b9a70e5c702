"""
Convoy Chroot Connection

Runs every command inside a chroot on the control machine. Remote paths are
translated to ``<chroot_root>/<path>``. All hosts share one connection.
"""

import asyncio
import logging
import shlex
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from convoy.connections.base import CommandResult, Connection, ConnectionFactory, is_localhost
from convoy.connections.local import LocalConnection, open_local_connection
from convoy.inventory.host import Host
from convoy.logging import TRACE

if TYPE_CHECKING:
    from convoy.engine.context import PlaybookContext
    from convoy.inventory.inventory import Inventory
    from convoy.tasks.request import TaskRequest

logger = logging.getLogger(__name__)


class ChrootConnection(LocalConnection):
    """Local execution confined to a chroot directory."""

    def __init__(self, host: Host, root: str):
        super().__init__(host)
        self.root = str(Path(root))

    def wrap_command(self, command: str) -> str:
        return f"chroot {shlex.quote(self.root)} sh -c {shlex.quote(command)}"

    def resolve_path(self, path: str) -> Path:
        return Path(self.root) / path.lstrip('/')

    async def run_command(
        self,
        command: str,
        request: Optional["TaskRequest"] = None,
        forward: bool = False,
    ) -> CommandResult:
        wrapped = self.wrap_command(command)
        logger.log(TRACE, "chroot exec: %s", wrapped)
        process = await asyncio.create_subprocess_shell(
            wrapped,
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
        await super().copy_file(src, str(self.resolve_path(dest)))

    async def write_data(self, data: str, dest: str) -> None:
        await super().write_data(data, str(self.resolve_path(dest)))


class ChrootFactory(ConnectionFactory):
    """Serves every non-localhost host from one shared chroot connection."""

    def __init__(self, inventory: "Inventory", root: str):
        self.inventory = inventory
        self.root = root
        self._shared: Optional[ChrootConnection] = None
        self._lock = asyncio.Lock()

    async def get_local_connection(self, context: "PlaybookContext") -> Connection:
        return await open_local_connection(context, self.inventory)

    async def get_connection(self, context: "PlaybookContext", host: Host) -> Connection:
        if is_localhost(host):
            return await self.get_local_connection(context)

        async def opener() -> Connection:
            async with self._lock:
                if self._shared is None:
                    self._shared = ChrootConnection(host, self.root)
                await self._shared.connect()
            host.os_type = self._shared.host.os_type
            return self._shared

        return await context.connection_cache.get_or_connect(host.name, opener)
