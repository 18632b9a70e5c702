# Copyright (c) 2024 Convoy Contributors
# MIT License

"""Convoy release metadata."""

from __future__ import annotations

__version__ = "0.3.0"
__author__ = "Convoy Contributors"
__codename__ = "Wayfarer"

# Version info tuple for programmatic comparison
VERSION_INFO = (0, 3, 0)
