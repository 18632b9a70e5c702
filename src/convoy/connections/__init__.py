"""
Convoy Connections Module

Transports (SSH, local, chroot, simulated), their factories, and the per-run
connection cache.
"""

from convoy.connections.base import CommandResult, Connection, ConnectionFactory, LOCALHOST
from convoy.connections.cache import ConnectionCache
from convoy.connections.local import LocalConnection, LocalFactory
from convoy.connections.chroot import ChrootConnection, ChrootFactory
from convoy.connections.noop import NoConnection, NoFactory

__all__ = [
    'CommandResult',
    'Connection',
    'ConnectionFactory',
    'LOCALHOST',
    'ConnectionCache',
    'LocalConnection',
    'LocalFactory',
    'ChrootConnection',
    'ChrootFactory',
    'NoConnection',
    'NoFactory',
]
