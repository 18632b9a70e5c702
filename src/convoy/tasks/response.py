"""
Task responses: the typed outcome of one state machine phase.
"""

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, FrozenSet, Optional

from convoy.tasks.fields import Field

if TYPE_CHECKING:
    from convoy.connections.base import CommandResult


class TaskStatus(enum.Enum):
    IS_MATCHED = "matched"
    NEEDS_CREATION = "needs_creation"
    NEEDS_MODIFICATION = "needs_modification"
    NEEDS_REMOVAL = "needs_removal"
    NEEDS_EXECUTION = "needs_execution"
    NEEDS_PASSIVE = "needs_passive"
    IS_CREATED = "created"
    IS_MODIFIED = "modified"
    IS_REMOVED = "removed"
    IS_EXECUTED = "executed"
    IS_PASSIVE = "passive"
    FAILED = "failed"
    NOT_SUPPORTED = "not_supported"


# Statuses that count as a change to the host
CHANGED_STATUSES = frozenset({
    TaskStatus.IS_CREATED,
    TaskStatus.IS_MODIFIED,
    TaskStatus.IS_REMOVED,
    TaskStatus.IS_EXECUTED,
})

# Query outcome -> status the follow-up mutating phase must return
EXPECTED_COMPLETION = {
    TaskStatus.NEEDS_CREATION: TaskStatus.IS_CREATED,
    TaskStatus.NEEDS_MODIFICATION: TaskStatus.IS_MODIFIED,
    TaskStatus.NEEDS_REMOVAL: TaskStatus.IS_REMOVED,
    TaskStatus.NEEDS_EXECUTION: TaskStatus.IS_EXECUTED,
    TaskStatus.NEEDS_PASSIVE: TaskStatus.IS_PASSIVE,
}


@dataclass(frozen=True)
class TaskResponse:
    """Immutable result of a single request to a module."""

    status: TaskStatus
    changes: FrozenSet[Field] = field(default_factory=frozenset)
    msg: Optional[str] = None
    command_result: Optional["CommandResult"] = None

    @property
    def is_failed(self) -> bool:
        return self.status == TaskStatus.FAILED

    @property
    def is_changed(self) -> bool:
        return self.status in CHANGED_STATUSES
