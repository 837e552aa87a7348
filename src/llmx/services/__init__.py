"""Logging, configuration, attachment and connection services."""
