"""Shared CLI utilities for filter and draft commands."""

from litrev.cli.shared.display import ProgressDisplay, print_usage_summary
from litrev.cli.shared.papers import load_papers, write_json

__all__ = [
    "ProgressDisplay",
    "load_papers",
    "print_usage_summary",
    "write_json",
]
