"""
Inventory Host representation.

A Host is a target machine. Group membership is not stored here; the
Inventory owns the host <-> group index.
"""

import copy
import enum
from typing import Any, Dict, Optional, Set

from convoy.engine.errors import InventoryError


class OSType(enum.Enum):
    """Operating system family detected from ``uname -a``."""
    LINUX = "Linux"
    MACOS = "MacOS"


class Host:
    """Represents a single host in the inventory."""

    def __init__(self, name: str, variables: Optional[Dict[str, Any]] = None):
        self.name = name
        self.variables: Dict[str, Any] = dict(variables) if variables else {}
        self.facts: Dict[str, Any] = {}
        self.os_type: Optional[OSType] = None
        self.provision: Optional[Dict[str, Any]] = None
        self._notified: Dict[int, Set[str]] = {}
        self._checksum_cache: Dict[str, str] = {}
        self._checksum_task_id: int = 0

    @property
    def short_name(self) -> str:
        """Hostname up to the first dot."""
        return self.name.split('.')[0]

    def set_variables(self, variables: Dict[str, Any]) -> None:
        """Merge variables into the host's own mapping."""
        self.variables.update(copy.deepcopy(variables))

    def get_variables(self) -> Dict[str, Any]:
        """Return a copy of the host's own variables."""
        return copy.deepcopy(self.variables)

    def update_facts(self, facts: Dict[str, Any]) -> None:
        """Merge facts gathered during the run."""
        self.facts.update(copy.deepcopy(facts))

    def get_facts(self) -> Dict[str, Any]:
        return copy.deepcopy(self.facts)

    def set_os_info(self, uname_output: str) -> None:
        """
        Detect the OS family from ``uname -a`` output.

        Raises:
            InventoryError: If the OS is not recognized
        """
        if uname_output.startswith("Linux"):
            self.os_type = OSType.LINUX
        elif uname_output.startswith("Darwin"):
            self.os_type = OSType.MACOS
        else:
            raise InventoryError(
                f"OS type could not be detected for host {self.name} from uname: {uname_output.strip()!r}"
            )

    # Handler notification

    def notify(self, play_number: int, signal: str) -> None:
        """Record that a handler signal fired for this host in a play."""
        self._notified.setdefault(play_number, set()).add(signal)

    def is_notified(self, play_number: int, signal: str) -> bool:
        return signal in self._notified.get(play_number, set())

    # Checksum cache, valid for a single task

    def set_task_id(self, task_id: int) -> None:
        """Advance the task generation, dropping stale checksums."""
        if task_id != self._checksum_task_id:
            self._checksum_cache.clear()
            self._checksum_task_id = task_id

    def get_checksum_cache(self, task_id: int, path: str) -> Optional[str]:
        if task_id != self._checksum_task_id:
            return None
        return self._checksum_cache.get(path)

    def set_checksum_cache(self, task_id: int, path: str, checksum: str) -> None:
        self.set_task_id(task_id)
        self._checksum_cache[path] = checksum

    def __repr__(self) -> str:
        return f"Host({self.name!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Host):
            return NotImplemented
        return self.name == other.name

    def __hash__(self) -> int:
        return hash(self.name)
