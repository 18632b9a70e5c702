# Copyright (c) 2024 Convoy Contributors
# MIT License

"""
Convoy: playbook execution engine for configuration management.

Applies declarative playbooks (plays -> roles -> tasks) against a fleet of
inventory hosts using an idempotent query-then-act protocol per task.

Features:
    - Group/host inventory graph with deterministic variable blending
    - Role dependencies with cycle detection, batching and tag filtering
    - Host-parallel execution with explicit countdown barriers
    - SSH (asyncssh), local, chroot and simulated connections

This package exposes release metadata; the engine lives in ``convoy.engine``.
"""

from __future__ import annotations

from convoy.release import __version__, __author__, __codename__

__all__ = [
    "__version__",
    "__author__",
    "__codename__",
]
