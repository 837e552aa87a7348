"""Conversation generation core for the LLM X chat client."""

__version__ = "0.3.0"
