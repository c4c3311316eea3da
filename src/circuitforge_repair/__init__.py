"""
circuitforge-repair — package root

File: src/circuitforge_repair/__init__.py
Last updated: 2026-10-19

Purpose
- Validation and repair convergence engine for generated circuit design source.

What should be included in this file
- Version export and a minimal public API surface.
- Import boundary rules: avoid importing heavy submodules at import time.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

from __future__ import annotations

__version__ = "0.3.0"

__all__ = ["__version__"]
