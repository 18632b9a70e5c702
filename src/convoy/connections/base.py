"""
Convoy Connection Base Classes

Abstract transport interface and connection factory interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from convoy.engine.errors import ConnectionError, InventoryError
from convoy.inventory.host import Host

if TYPE_CHECKING:
    from convoy.engine.context import PlaybookContext
    from convoy.tasks.request import TaskRequest

LOCALHOST = "localhost"


@dataclass(frozen=True)
class CommandResult:
    """Result of running a command on a host."""

    cmd: str
    out: str
    rc: int

    @property
    def success(self) -> bool:
        return self.rc == 0


class Connection(ABC):
    """
    Abstract base class for connections.

    All transports (SSH, local, chroot, no-op) implement this interface.
    """

    def __init__(self, host: Host):
        self.host = host
        self._whoami: Optional[str] = None

    @abstractmethod
    async def connect(self) -> None:
        """Establish the connection."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the connection."""
        pass

    @abstractmethod
    async def run_command(
        self,
        command: str,
        request: Optional["TaskRequest"] = None,
        forward: bool = False,
    ) -> CommandResult:
        """
        Run a shell command on the host.

        Args:
            command: Command line, already wrapped for sudo if needed
            request: Request being served, for logging
            forward: Forward the SSH agent for this command

        Returns:
            CommandResult with combined output and exit status
        """
        pass

    @abstractmethod
    async def copy_file(self, src: str, dest: str) -> None:
        """Copy a local file to ``dest`` on the host."""
        pass

    @abstractmethod
    async def write_data(self, data: str, dest: str) -> None:
        """Write string content to ``dest`` on the host."""
        pass

    async def whoami(self) -> str:
        """Return the login user on the host, cached after the first call."""
        if self._whoami is None:
            result = await self.run_command("whoami")
            if not result.success:
                raise ConnectionError(self.host.name, f"whoami failed: {result.out.strip()}",
                                      connection_type=self.connection_type)
            self._whoami = result.out.strip()
        return self._whoami

    async def detect_os(self) -> None:
        """Populate the host's OS type from ``uname -a``."""
        result = await self.run_command("uname -a")
        if not result.success:
            raise ConnectionError(self.host.name, f"uname failed: {result.out.strip()}",
                                  connection_type=self.connection_type)
        try:
            self.host.set_os_info(result.out.strip())
        except InventoryError as e:
            raise ConnectionError(self.host.name, e.message, connection_type=self.connection_type)

    @property
    def connection_type(self) -> str:
        """Return the connection type name."""
        return self.__class__.__name__.replace('Connection', '').lower()


class ConnectionFactory(ABC):
    """Hands out cached connections for hosts within one run."""

    @abstractmethod
    async def get_connection(self, context: "PlaybookContext", host: Host) -> Connection:
        """Return the (possibly cached) connection for ``host``."""
        pass

    @abstractmethod
    async def get_local_connection(self, context: "PlaybookContext") -> Connection:
        """Return the shared local connection."""
        pass


def is_localhost(host: Host) -> bool:
    return host.name == LOCALHOST
