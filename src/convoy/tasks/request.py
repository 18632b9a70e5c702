"""
Task requests: what phase of the state machine a module is asked to run.
"""

import enum
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional

from convoy.tasks.fields import Field


class TaskRequestType(enum.Enum):
    VALIDATE = "validate"
    QUERY = "query"
    CREATE = "create"
    MODIFY = "modify"
    REMOVE = "remove"
    EXECUTE = "execute"
    PASSIVE = "passive"


@dataclass(frozen=True)
class SudoDetails:
    """Privilege escalation settings applied to remote commands."""
    user: Optional[str] = None
    template: str = ""


@dataclass(frozen=True)
class TaskRequest:
    """A single phase request sent to a module's action."""

    request_type: TaskRequestType
    changes: FrozenSet[Field] = field(default_factory=frozenset)
    sudo_details: Optional[SudoDetails] = None

    @classmethod
    def validate(cls) -> "TaskRequest":
        return cls(TaskRequestType.VALIDATE)

    @classmethod
    def query(cls, sudo_details: Optional[SudoDetails] = None) -> "TaskRequest":
        return cls(TaskRequestType.QUERY, sudo_details=sudo_details)

    @classmethod
    def create(cls, sudo_details: Optional[SudoDetails] = None) -> "TaskRequest":
        return cls(TaskRequestType.CREATE, sudo_details=sudo_details)

    @classmethod
    def modify(cls, changes: Iterable[Field], sudo_details: Optional[SudoDetails] = None) -> "TaskRequest":
        return cls(TaskRequestType.MODIFY, frozenset(changes), sudo_details)

    @classmethod
    def remove(cls, sudo_details: Optional[SudoDetails] = None) -> "TaskRequest":
        return cls(TaskRequestType.REMOVE, sudo_details=sudo_details)

    @classmethod
    def execute(cls, sudo_details: Optional[SudoDetails] = None) -> "TaskRequest":
        return cls(TaskRequestType.EXECUTE, sudo_details=sudo_details)

    @classmethod
    def passive(cls, sudo_details: Optional[SudoDetails] = None) -> "TaskRequest":
        return cls(TaskRequestType.PASSIVE, sudo_details=sudo_details)

    @property
    def is_sudoing(self) -> bool:
        return self.sudo_details is not None and self.sudo_details.user is not None
