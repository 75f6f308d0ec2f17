"""Utility modules for LitRev."""

from litrev.utils.logging import generate_request_id, get_logger, setup_logging

__all__ = [
    "generate_request_id",
    "get_logger",
    "setup_logging",
]
