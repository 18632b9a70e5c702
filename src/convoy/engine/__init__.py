"""
Convoy Engine Module

Traversal, scheduling, barriers, templating and run-wide context.
Submodules are imported directly (``from convoy.engine.traversal import ...``);
only the error taxonomy is re-exported here.
"""

from convoy.engine.errors import (
    ConvoyError,
    ConfigurationError,
    ParseError,
    InventoryError,
    RoleCycleError,
    ConnectionError,
    ModuleError,
    TemplateError,
)

__all__ = [
    'ConvoyError',
    'ConfigurationError',
    'ParseError',
    'InventoryError',
    'RoleCycleError',
    'ConnectionError',
    'ModuleError',
    'TemplateError',
]
