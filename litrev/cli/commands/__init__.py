"""CLI commands for LitRev."""
