"""
Convoy Remote Facility

Command execution and file helpers against the current host's connection.
Commands are wrapped with the sudo template when the request carries sudo
details. A non-zero exit status raises CommandFailedError unless the caller
asks for the raw result.
"""

import logging
import shlex
from typing import TYPE_CHECKING, Optional

from convoy.connections.base import CommandResult
from convoy.engine.errors import CommandFailedError
from convoy.engine.templating import TemplateEngine
from convoy.inventory.host import OSType
from convoy.tasks.request import TaskRequest

if TYPE_CHECKING:
    from convoy.modules.handle import TaskHandle

logger = logging.getLogger(__name__)


class Remote:
    """Remote operations for one module invocation on one host."""

    def __init__(self, handle: "TaskHandle", engine: TemplateEngine):
        self.handle = handle
        self.engine = engine

    @property
    def _is_macos(self) -> bool:
        return self.handle.host.os_type == OSType.MACOS

    def wrap_sudo(self, request: Optional[TaskRequest], cmd: str) -> str:
        """Apply the sudo template if the request asks for escalation."""
        if request is None or not request.is_sudoing:
            return cmd
        details = request.sudo_details
        return self.engine.render(details.template, {
            'convoy_sudo_user': details.user,
            'convoy_command': f"sh -c {shlex.quote(cmd)}",
        })

    async def run(self, request: Optional[TaskRequest], cmd: str, check_rc: bool = True,
                  forward: bool = False) -> CommandResult:
        """
        Run a command on the host.

        Raises:
            CommandFailedError: If ``check_rc`` is set and the command fails
        """
        wrapped = self.wrap_sudo(request, cmd)
        result = await self.handle.connection.run_command(wrapped, request=request, forward=forward)
        result = CommandResult(cmd=cmd, out=result.out, rc=result.rc)
        if check_rc and not result.success:
            raise CommandFailedError(self.handle.module_name, self.handle.host.name, result)
        return result

    async def run_unchecked(self, request: Optional[TaskRequest], cmd: str) -> CommandResult:
        return await self.run(request, cmd, check_rc=False)

    async def get_whoami(self) -> str:
        return await self.handle.connection.whoami()

    # File tests

    async def _test(self, request: TaskRequest, flag: str, path: str) -> bool:
        result = await self.run_unchecked(request, f"test {flag} {shlex.quote(path)}")
        return result.success

    async def file_exists(self, request: TaskRequest, path: str) -> bool:
        return await self._test(request, "-e", path)

    async def is_file(self, request: TaskRequest, path: str) -> bool:
        return await self._test(request, "-f", path)

    async def is_directory(self, request: TaskRequest, path: str) -> bool:
        return await self._test(request, "-d", path)

    async def get_mode(self, request: TaskRequest, path: str) -> Optional[str]:
        """Octal permission string (e.g. "644"), or None if the path is missing."""
        if not await self.file_exists(request, path):
            return None
        if self._is_macos:
            cmd = f"stat -f '%A' {shlex.quote(path)}"
        else:
            cmd = f"stat -c '%a' {shlex.quote(path)}"
        result = await self.run(request, cmd)
        return result.out.strip()

    # File mutations

    async def set_mode(self, request: TaskRequest, path: str, mode: str) -> None:
        await self.run(request, f"chmod {shlex.quote(mode)} {shlex.quote(path)}")

    async def touch_file(self, request: TaskRequest, path: str) -> None:
        await self.run(request, f"touch {shlex.quote(path)}")

    async def create_directory(self, request: TaskRequest, path: str) -> None:
        await self.run(request, f"mkdir -p {shlex.quote(path)}")

    async def delete_file(self, request: TaskRequest, path: str) -> None:
        await self.run(request, f"rm -f {shlex.quote(path)}")

    async def delete_directory(self, request: TaskRequest, path: str, recurse: bool = False) -> None:
        if recurse:
            await self.run(request, f"rm -rf {shlex.quote(path)}")
        else:
            await self.run(request, f"rmdir {shlex.quote(path)}")

    async def write_data(self, request: TaskRequest, data: str, dest: str) -> None:
        await self.handle.connection.write_data(data, dest)

    async def copy_file(self, request: TaskRequest, src: str, dest: str) -> None:
        await self.handle.connection.copy_file(src, dest)

    # Checksums, cached for the duration of one task

    async def get_checksum(self, request: TaskRequest, path: str) -> Optional[str]:
        host = self.handle.host
        cached = host.get_checksum_cache(self.handle.task_id, path)
        if cached is not None:
            return cached
        if not await self.is_file(request, path):
            return None
        if self._is_macos:
            cmd = f"shasum -b -a 512 {shlex.quote(path)}"
        else:
            cmd = f"sha512sum {shlex.quote(path)}"
        result = await self.run(request, cmd)
        checksum = result.out.split()[0] if result.out.strip() else ""
        host.set_checksum_cache(self.handle.task_id, path, checksum)
        return checksum
