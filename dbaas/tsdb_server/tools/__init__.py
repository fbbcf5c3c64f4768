"""
CLI tools for TSDB administration.

This module provides command-line tools for:
- inspect: Summarize a snapshot tree or dump one user's history

Invariants:
    - Tools work offline (no running server required)
    - Tools never modify the snapshot tree
"""

from .inspect import InspectTool

__all__ = ["InspectTool"]
