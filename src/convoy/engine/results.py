"""
Convoy Result Classes

Per-host task outcomes produced by workers, and the per-host counters the
coordinator folds them into for the final recap.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import json

from convoy.connections.base import CommandResult
from convoy.tasks.response import TaskResponse, TaskStatus


@dataclass
class HostOutcome:
    """Result of running one task (or one loop item) on one host."""

    host: str
    task_name: str
    response: Optional[TaskResponse] = None
    skipped: bool = False
    unreachable: bool = False
    ignored: bool = False
    msg: str = ""
    # Handler signal to raise on change
    notify: Optional[str] = None

    @property
    def status(self) -> Optional[TaskStatus]:
        return self.response.status if self.response else None

    @property
    def failed(self) -> bool:
        """Whether this outcome marks the host failed."""
        if self.ignored or self.skipped:
            return False
        return self.unreachable or (self.response is not None and self.response.is_failed)

    @property
    def changed(self) -> bool:
        return self.response is not None and self.response.is_changed

    @property
    def command_result(self) -> Optional[CommandResult]:
        return self.response.command_result if self.response else None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON output."""
        result: Dict[str, Any] = {
            "host": self.host,
            "task": self.task_name,
            "status": "skipped" if self.skipped else (self.status.value if self.status else None),
        }
        if self.unreachable:
            result["unreachable"] = True
        if self.ignored:
            result["ignored"] = True
        if self.msg:
            result["msg"] = self.msg
        cmd = self.command_result
        if cmd is not None:
            result["cmd"] = cmd.cmd
            result["rc"] = cmd.rc
            result["out"] = cmd.out
        return result


# Query outcomes reported as the final status in check mode
_STATUS_COUNTERS = {
    TaskStatus.IS_MATCHED: "matched",
    TaskStatus.IS_CREATED: "created",
    TaskStatus.NEEDS_CREATION: "created",
    TaskStatus.IS_MODIFIED: "modified",
    TaskStatus.NEEDS_MODIFICATION: "modified",
    TaskStatus.IS_REMOVED: "removed",
    TaskStatus.NEEDS_REMOVAL: "removed",
    TaskStatus.IS_EXECUTED: "executed",
    TaskStatus.NEEDS_EXECUTION: "executed",
    TaskStatus.IS_PASSIVE: "passive",
    TaskStatus.NEEDS_PASSIVE: "passive",
}


@dataclass
class HostStats:
    """Counters for a single host across the run."""

    host: str
    attempted: int = 0
    matched: int = 0
    created: int = 0
    modified: int = 0
    removed: int = 0
    executed: int = 0
    passive: int = 0
    skipped: int = 0
    failed: int = 0
    ignored: int = 0
    unreachable: int = 0

    def record(self, outcome: HostOutcome) -> None:
        """Fold one outcome into the counters."""
        if outcome.skipped:
            self.skipped += 1
            return
        self.attempted += 1
        if outcome.unreachable:
            self.unreachable += 1
            return
        if outcome.ignored:
            self.ignored += 1
            return
        status = outcome.status
        if status is None or status in (TaskStatus.FAILED, TaskStatus.NOT_SUPPORTED):
            self.failed += 1
            return
        counter = _STATUS_COUNTERS[status]
        setattr(self, counter, getattr(self, counter) + 1)

    @property
    def ok(self) -> int:
        return self.matched + self.passive

    @property
    def changed(self) -> int:
        """Tasks that adjusted the host."""
        return self.created + self.modified + self.removed + self.executed

    @property
    def has_failures(self) -> bool:
        return self.failed > 0 or self.unreachable > 0

    def merge(self, other: 'HostStats') -> None:
        for name in ('attempted', 'matched', 'created', 'modified', 'removed', 'executed',
                     'passive', 'skipped', 'failed', 'ignored', 'unreachable'):
            setattr(self, name, getattr(self, name) + getattr(other, name))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "ok": self.ok,
            "changed": self.changed,
            "failed": self.failed,
            "skipped": self.skipped,
            "unreachable": self.unreachable,
            "ignored": self.ignored,
            "attempted": self.attempted,
            "matched": self.matched,
            "created": self.created,
            "modified": self.modified,
            "removed": self.removed,
            "executed": self.executed,
            "passive": self.passive,
        }


@dataclass
class PlaybookResult:
    """Result of a whole run: per-host counters plus the failed set."""

    playbook_paths: List[str]
    host_stats: Dict[str, HostStats] = field(default_factory=dict)
    failed_hosts: List[str] = field(default_factory=list)
    run_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "playbooks": self.playbook_paths,
            "failed_hosts": sorted(self.failed_hosts),
            "stats": {h: s.to_dict() for h, s in sorted(self.host_stats.items())},
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @property
    def success(self) -> bool:
        return not self.failed_hosts

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 2
