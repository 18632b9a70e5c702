"""
Shared fixtures for convoy tests.
"""

from pathlib import Path
from typing import List, Optional

import pytest

from convoy.connections.base import ConnectionFactory
from convoy.connections.noop import NoFactory
from convoy.engine.context import PlaybookContext
from convoy.engine.traversal import RunState
from convoy.engine.visitor import PlaybookVisitor
from convoy.inventory.inventory import Inventory


class RecordingVisitor(PlaybookVisitor):
    """Quiet visitor that remembers the order tasks and roles started in."""

    def __init__(self, context: PlaybookContext, check_mode: bool = False):
        super().__init__(context, quiet=True, check_mode=check_mode)
        self.tasks: List[str] = []
        self.roles: List[str] = []
        self.outcomes = []

    def on_task_start(self, task_name: str, handler: bool = False) -> None:
        self.tasks.append(task_name)
        super().on_task_start(task_name, handler=handler)

    def on_role_start(self, role: str) -> None:
        self.roles.append(role)
        super().on_role_start(role)

    def on_host_outcome(self, outcome) -> None:
        self.outcomes.append(outcome)
        super().on_host_outcome(outcome)


def make_run_state(
    inventory: Inventory,
    playbooks: Optional[List[Path]] = None,
    factory: Optional[ConnectionFactory] = None,
    context: Optional[PlaybookContext] = None,
    **kwargs,
) -> RunState:
    context = context or PlaybookContext()
    visitor = RecordingVisitor(context, check_mode=kwargs.get('check_mode', False))
    return RunState(
        context=context,
        inventory=inventory,
        connection_factory=factory or NoFactory(),
        visitor=visitor,
        playbook_paths=list(playbooks or []),
        **kwargs,
    )


@pytest.fixture
def web_inventory() -> Inventory:
    """Three hosts in "web"."""
    inventory = Inventory()
    for name in ("web1", "web2", "web3"):
        inventory.store_host("web", name)
    return inventory


@pytest.fixture
def local_inventory() -> Inventory:
    inventory = Inventory()
    inventory.store_host("all", "localhost")
    return inventory
