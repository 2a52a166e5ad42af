"""Adapter modules for external integrations."""

from .vallox import ValloxClient

__all__ = ["ValloxClient"]
