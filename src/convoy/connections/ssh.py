"""
Convoy SSH Connection (asyncssh)

SSH transport with key, password, or agent authentication. The host's OS
type is detected with ``uname -a`` right after connecting.
"""

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

import asyncssh

from convoy.connections.base import CommandResult, Connection, ConnectionFactory, is_localhost
from convoy.connections.local import open_local_connection
from convoy.engine.errors import ConnectionError
from convoy.inventory.host import Host
from convoy.logging import TRACE

if TYPE_CHECKING:
    from convoy.engine.context import PlaybookContext
    from convoy.inventory.inventory import Inventory
    from convoy.tasks.request import TaskRequest

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 10


def connect_timeout() -> int:
    """Connect timeout in seconds, overridable with CONVOY_SSH_TIMEOUT."""
    value = os.environ.get('CONVOY_SSH_TIMEOUT')
    if value is None:
        return DEFAULT_CONNECT_TIMEOUT
    try:
        return int(value)
    except ValueError:
        logger.warning("ignoring non-integer CONVOY_SSH_TIMEOUT=%r", value)
        return DEFAULT_CONNECT_TIMEOUT


class SSHConnection(Connection):
    """SSH connection using asyncssh."""

    def __init__(
        self,
        host: Host,
        address: str,
        port: int,
        username: str,
        forward_agent: bool = False,
        password: Optional[str] = None,
        private_key_file: Optional[str] = None,
        known_hosts: bool = True,
        timeout: int = DEFAULT_CONNECT_TIMEOUT,
    ):
        super().__init__(host)
        self.address = address
        self.port = port
        self.username = username
        self.forward_agent = forward_agent
        self.password = password
        self.private_key_file = private_key_file
        self.known_hosts = known_hosts
        self.timeout = timeout
        self._conn: Optional[asyncssh.SSHClientConnection] = None
        self._sftp: Optional[asyncssh.SFTPClient] = None

    async def connect(self) -> None:
        """Establish the SSH session and detect the remote OS."""
        if self._conn is not None:
            return

        connect_kwargs: Dict[str, Any] = {
            'host': self.address,
            'port': self.port,
            'username': self.username,
            'agent_forwarding': self.forward_agent,
            'connect_timeout': self.timeout,
        }
        if self.private_key_file:
            connect_kwargs['client_keys'] = [self.private_key_file]
        if self.password:
            connect_kwargs['password'] = self.password
        if not self.known_hosts:
            connect_kwargs['known_hosts'] = None

        try:
            self._conn = await asyncssh.connect(**connect_kwargs)
        except (OSError, asyncssh.Error) as e:
            raise ConnectionError(host=self.host.name, message=str(e), connection_type='ssh')

        try:
            await self.detect_os()
        except ConnectionError:
            await self.close()
            raise

    async def close(self) -> None:
        if self._sftp:
            self._sftp.exit()
            self._sftp = None
        if self._conn:
            self._conn.close()
            await self._conn.wait_closed()
            self._conn = None

    async def run_command(
        self,
        command: str,
        request: Optional["TaskRequest"] = None,
        forward: bool = False,
    ) -> CommandResult:
        if self._conn is None:
            raise ConnectionError(self.host.name, "not connected", connection_type='ssh')
        logger.log(TRACE, "ssh exec on %s: %s", self.host.name, command)
        try:
            result = await self._conn.run(command, check=False, stderr=asyncssh.STDOUT)
        except (OSError, asyncssh.Error) as e:
            raise ConnectionError(self.host.name, str(e), connection_type='ssh')
        out = result.stdout or ""
        if isinstance(out, bytes):
            out = out.decode('utf-8', errors='replace')
        return CommandResult(cmd=command, out=out, rc=result.exit_status or 0)

    async def _get_sftp(self) -> asyncssh.SFTPClient:
        if self._conn is None:
            raise ConnectionError(self.host.name, "not connected", connection_type='ssh')
        if self._sftp is None:
            self._sftp = await self._conn.start_sftp_client()
        return self._sftp

    async def copy_file(self, src: str, dest: str) -> None:
        sftp = await self._get_sftp()
        try:
            await sftp.makedirs(str(Path(dest).parent), exist_ok=True)
            await sftp.put(src, dest)
        except (OSError, asyncssh.Error) as e:
            raise ConnectionError(self.host.name, f"copy to {dest} failed: {e}", connection_type='ssh')

    async def write_data(self, data: str, dest: str) -> None:
        sftp = await self._get_sftp()
        try:
            async with sftp.open(dest, 'w') as remote_file:
                await remote_file.write(data)
        except (OSError, asyncssh.Error) as e:
            raise ConnectionError(self.host.name, f"write to {dest} failed: {e}", connection_type='ssh')


class SshFactory(ConnectionFactory):
    """
    Opens SSH connections for inventory hosts.

    A host literally named "localhost" is always served by the local
    connection instead.
    """

    def __init__(
        self,
        inventory: "Inventory",
        forward_agent: bool = False,
        login_password: Optional[str] = None,
        private_key_file: Optional[str] = None,
    ):
        self.inventory = inventory
        self.forward_agent = forward_agent
        self.login_password = login_password
        self.private_key_file = private_key_file

    async def get_local_connection(self, context: "PlaybookContext") -> Connection:
        return await open_local_connection(context, self.inventory)

    async def get_connection(self, context: "PlaybookContext", host: Host) -> Connection:
        if is_localhost(host):
            return await self.get_local_connection(context)

        async def opener() -> Connection:
            connection = self._build(context, host)
            await connection.connect()
            return connection

        return await context.connection_cache.get_or_connect(host.name, opener)

    def _build(self, context: "PlaybookContext", host: Host) -> SSHConnection:
        variables = self.inventory.get_blended_variables(host.name)
        address = str(variables.get('convoy_ssh_hostname', host.name))
        port = int(variables.get('convoy_ssh_port', context.ssh_port))
        username = str(variables.get('convoy_ssh_user', context.ssh_user))
        known_hosts = str(variables.get('convoy_ssh_host_key_checking', True)).lower() not in ('false', 'no')
        return SSHConnection(
            host,
            address=address,
            port=port,
            username=username,
            forward_agent=self.forward_agent,
            password=self.login_password,
            private_key_file=self.private_key_file,
            known_hosts=known_hosts,
            timeout=connect_timeout(),
        )
