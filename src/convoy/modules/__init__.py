"""
Convoy Modules

Built-in task modules and the contract they implement.
"""

from convoy.modules.base import Action, EvaluatedTask, Module
from convoy.modules.handle import TaskHandle
from convoy.modules.registry import MODULES, get_module, list_modules

__all__ = [
    'Action',
    'EvaluatedTask',
    'Module',
    'TaskHandle',
    'MODULES',
    'get_module',
    'list_modules',
]
