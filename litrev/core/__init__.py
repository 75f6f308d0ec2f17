"""Batch execution, run control and progress reporting."""
