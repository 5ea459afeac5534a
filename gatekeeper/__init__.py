"""Gatekeeper: resilient request admission for web-facing services."""

__version__ = "0.1.0"
