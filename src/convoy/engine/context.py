"""
Convoy Playbook Context

Run-wide mutable state: current play/role/task position, per-host counters,
the targeted and failed host sets, the layered variable stack and the
connection cache. One instance per run; nothing here is module-global.

Counters and the failed set are only mutated by the coordinator (the
traversal loop, or the result-draining task in async mode). Workers return
HostOutcome values instead of touching the context.
"""

import copy
import getpass
import logging
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from convoy.connections.cache import ConnectionCache
from convoy.engine.results import HostOutcome, HostStats
from convoy.inventory.host import Host

if TYPE_CHECKING:
    from convoy.engine.playbook import Play
    from convoy.inventory.inventory import Inventory

logger = logging.getLogger(__name__)

DEFAULT_SSH_PORT = 22
DEFAULT_SUDO_TEMPLATE = "sudo -u '{{ convoy_sudo_user }}' {{ convoy_command }}"


def default_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "root"


class PlaybookContext:
    """Shared state for a single run."""

    def __init__(
        self,
        verbosity: int = 0,
        ssh_user: Optional[str] = None,
        ssh_port: int = DEFAULT_SSH_PORT,
        sudo: Optional[str] = None,
        extra_vars: Optional[Dict[str, Any]] = None,
    ):
        self.verbosity = verbosity
        self.run_id = uuid.uuid4().hex

        self.playbook_path: Optional[str] = None
        self.playbook_directory: Optional[Path] = None
        self.play: Optional[str] = None
        self.role: Optional[str] = None
        self.role_path: Optional[Path] = None
        self.task: Optional[str] = None
        self.play_count = 0
        self.role_count = 0
        self.task_count = 0

        self.seen_hosts: Dict[str, Host] = {}
        self.targeted_hosts: Dict[str, Host] = {}
        self.failed_hosts: Dict[str, Host] = {}
        self.host_stats: Dict[str, HostStats] = {}
        self.failed_tasks = 0

        self.defaults_storage: Dict[str, Any] = {}
        self.role_defaults_storage: Dict[str, Any] = {}
        self.role_vars_storage: Dict[str, Any] = {}
        self.vars_storage: Dict[str, Any] = {}
        self.extra_vars: Dict[str, Any] = copy.deepcopy(extra_vars) if extra_vars else {}

        self.connection_cache = ConnectionCache()

        self.default_ssh_user = ssh_user or default_user()
        self.default_ssh_port = ssh_port
        self.ssh_user = self.default_ssh_user
        self.ssh_port = ssh_port
        self.default_sudo = sudo
        self.sudo = sudo
        self.sudo_template = DEFAULT_SUDO_TEMPLATE

    # Position tracking

    def set_playbook_path(self, path: Path) -> None:
        self.playbook_path = str(path)
        self.playbook_directory = path.resolve().parent

    def set_play(self, play: "Play") -> None:
        self.play = play.name
        self.play_count += 1
        self.ssh_user = play.ssh_user or self.default_ssh_user
        self.ssh_port = play.ssh_port or self.default_ssh_port
        self.sudo = play.sudo or self.default_sudo
        self.sudo_template = play.sudo_template or DEFAULT_SUDO_TEMPLATE
        self.defaults_storage = {}
        self.vars_storage = {}
        self.unset_role()

    def set_role(self, name: str, path: Path, role_vars: Dict[str, Any], role_defaults: Dict[str, Any]) -> None:
        self.role = name
        self.role_path = path
        self.role_count += 1
        self.role_vars_storage = copy.deepcopy(role_vars)
        self.role_defaults_storage = copy.deepcopy(role_defaults)

    def unset_role(self) -> None:
        self.role = None
        self.role_path = None
        self.role_vars_storage = {}
        self.role_defaults_storage = {}

    def set_task(self, name: str) -> None:
        self.task = name
        self.task_count += 1

    # Host sets

    def set_targeted_hosts(self, hosts: List[Host]) -> None:
        self.targeted_hosts = {host.name: host for host in hosts}
        for host in hosts:
            self.seen_hosts[host.name] = host
            self.host_stats.setdefault(host.name, HostStats(host.name))

    def get_remaining_hosts(self) -> Dict[str, Host]:
        """Targeted hosts that have not failed, sorted by name."""
        return {
            name: self.targeted_hosts[name]
            for name in sorted(self.targeted_hosts)
            if name not in self.failed_hosts
        }

    def fail_host(self, host: Host) -> None:
        if host.name not in self.failed_hosts:
            logger.info("host %s marked failed", host.name)
        self.failed_hosts[host.name] = host

    def is_failed(self, host_name: str) -> bool:
        return host_name in self.failed_hosts

    def record_outcome(self, outcome: HostOutcome) -> None:
        """Fold a worker's outcome into counters and the failed set."""
        stats = self.host_stats.setdefault(outcome.host, HostStats(outcome.host))
        stats.record(outcome)
        if outcome.failed:
            self.failed_tasks += 1
            host = self.seen_hosts.get(outcome.host) or self.targeted_hosts.get(outcome.host)
            if host is not None:
                self.fail_host(host)
        elif outcome.changed and outcome.notify:
            host = self.seen_hosts.get(outcome.host)
            if host is not None:
                host.notify(self.play_count, outcome.notify)

    def get_host_stats(self, host_name: str) -> HostStats:
        return self.host_stats.setdefault(host_name, HostStats(host_name))

    # Variables

    def load_play_vars(self, play_vars: Dict[str, Any], defaults: Dict[str, Any]) -> None:
        self.vars_storage.update(copy.deepcopy(play_vars))
        self.defaults_storage.update(copy.deepcopy(defaults))

    def push_extra_vars(self, extra: Dict[str, Any]) -> None:
        self.extra_vars.update(copy.deepcopy(extra))

    def get_complete_blended_variables(
        self,
        inventory: "Inventory",
        host: Host,
        role_vars: Optional[Dict[str, Any]] = None,
        role_defaults: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Merge every variable layer for a host.

        Precedence, lowest first: defaults, role defaults, inventory blended
        vars, role vars, play vars, extra vars. Explicit ``role_vars`` and
        ``role_defaults`` replace the current role's layers (async mode runs
        tasks from several roles at once).
        """
        if role_vars is None:
            role_vars = self.role_vars_storage
        if role_defaults is None:
            role_defaults = self.role_defaults_storage
        blended: Dict[str, Any] = {}
        blended.update(copy.deepcopy(self.defaults_storage))
        blended.update(copy.deepcopy(role_defaults))
        blended.update(inventory.get_blended_variables(host.name))
        blended.update(copy.deepcopy(role_vars))
        blended.update(copy.deepcopy(self.vars_storage))
        blended.update(copy.deepcopy(self.extra_vars))
        return blended
