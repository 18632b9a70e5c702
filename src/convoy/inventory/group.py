"""
Inventory Group representation.

A Group is a named bundle of variables. Its relations to subgroups, parent
groups and hosts live in the Inventory side index.
"""

import copy
from typing import Any, Dict, Optional


class Group:
    """Represents a group in the inventory graph."""

    def __init__(self, name: str, variables: Optional[Dict[str, Any]] = None):
        self.name = name
        self.variables: Dict[str, Any] = dict(variables) if variables else {}

    def set_variables(self, variables: Dict[str, Any]) -> None:
        """Merge variables into the group's own mapping."""
        self.variables.update(copy.deepcopy(variables))

    def get_variables(self) -> Dict[str, Any]:
        """Return a copy of the group's own variables."""
        return copy.deepcopy(self.variables)

    def __repr__(self) -> str:
        return f"Group({self.name!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Group):
            return NotImplemented
        return self.name == other.name

    def __hash__(self) -> int:
        return hash(self.name)
