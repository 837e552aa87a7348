"""Prompt assembly, cancellation and generation orchestration."""
