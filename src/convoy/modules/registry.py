"""
Convoy Module Registry

Static table of every task module, keyed by the name used in playbook YAML.
Each entry is the module's ``from_dict`` factory.
"""

from typing import Callable, Dict, List, Optional

from convoy.modules.base import Module
from convoy.modules.builtin_assert import AssertModule
from convoy.modules.builtin_directory import DirectoryModule
from convoy.modules.builtin_echo import EchoModule
from convoy.modules.builtin_facts import FactsModule
from convoy.modules.builtin_fail import FailModule
from convoy.modules.builtin_file import FileModule
from convoy.modules.builtin_set import SetModule
from convoy.modules.builtin_shell import ShellModule
from convoy.modules.builtin_wait_for_others import WaitForOthersModule

ModuleFactory = Callable[..., Module]

MODULES: Dict[str, ModuleFactory] = {
    AssertModule.name: AssertModule.from_dict,
    DirectoryModule.name: DirectoryModule.from_dict,
    EchoModule.name: EchoModule.from_dict,
    FactsModule.name: FactsModule.from_dict,
    FailModule.name: FailModule.from_dict,
    FileModule.name: FileModule.from_dict,
    SetModule.name: SetModule.from_dict,
    ShellModule.name: ShellModule.from_dict,
    WaitForOthersModule.name: WaitForOthersModule.from_dict,
}


def get_module(name: str) -> Optional[ModuleFactory]:
    """Get a module factory by name."""
    return MODULES.get(name)


def list_modules() -> List[str]:
    """List all registered module names."""
    return sorted(MODULES)
