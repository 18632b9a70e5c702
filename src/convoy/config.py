"""
Convoy Run Configuration

``RunConfig`` is everything a run needs, independent of how it was asked
for. The CLI builds one from its arguments; embedding code can build one
directly and hand it to ``PlaybookRunner``.
"""

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from convoy.engine.context import DEFAULT_SSH_PORT
from convoy.engine.errors import ConfigurationError
from convoy.engine.scheduler import DEFAULT_THREADS
from convoy.engine.traversal import DEFAULT_ROLE_PATH


class ConnectionMode(enum.Enum):
    SSH = "ssh"
    LOCAL = "local"
    SIMULATE = "simulate"
    CHROOT = "chroot"


# Modes that can run without an inventory (they target localhost)
LOCAL_MODES = (ConnectionMode.LOCAL, ConnectionMode.CHROOT)


@dataclass
class RunConfig:
    playbook_paths: List[Path] = field(default_factory=list)
    inventory_paths: List[Path] = field(default_factory=list)
    role_paths: List[Path] = field(default_factory=lambda: [DEFAULT_ROLE_PATH])
    mode: ConnectionMode = ConnectionMode.SSH
    check_mode: bool = False
    async_mode: bool = False

    limit_groups: List[str] = field(default_factory=list)
    limit_hosts: List[str] = field(default_factory=list)
    batch_size: Optional[int] = None
    threads: int = DEFAULT_THREADS
    tags: List[str] = field(default_factory=list)

    ssh_user: Optional[str] = None
    ssh_port: int = DEFAULT_SSH_PORT
    sudo: Optional[str] = None
    forward_agent: bool = False
    login_password: Optional[str] = None
    private_key_file: Optional[str] = None
    chroot_root: Optional[str] = None

    extra_vars: Dict[str, Any] = field(default_factory=dict)
    verbosity: int = 0
    log_path: Optional[str] = None
    quiet: bool = False

    def validate(self) -> None:
        """
        Check the configuration before anything is loaded.

        Raises:
            ConfigurationError: On missing or inconsistent settings
        """
        if not self.playbook_paths:
            raise ConfigurationError("no playbook paths specified")
        if self.mode not in LOCAL_MODES and not self.inventory_paths:
            raise ConfigurationError(f"--inventory is required in {self.mode.value} mode")
        if self.mode == ConnectionMode.CHROOT and not self.chroot_root:
            raise ConfigurationError("--chroot-root is required in chroot mode")
        if self.threads < 1:
            raise ConfigurationError(f"--threads must be at least 1, got {self.threads}")
        if self.batch_size is not None and self.batch_size < 1:
            raise ConfigurationError(f"--batch-size must be at least 1, got {self.batch_size}")
        if not 0 < self.ssh_port < 65536:
            raise ConfigurationError(f"--port out of range: {self.ssh_port}")
