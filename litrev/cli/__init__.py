"""Command line interface for LitRev."""
