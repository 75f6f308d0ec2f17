"""LitRev - LLM request orchestration for literature review workflows."""

__version__ = "0.3.0"
