"""Vibe Coding course backend: payments, provisioning, video and messaging."""

__version__ = "1.0.0"
