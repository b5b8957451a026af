"""Adapter modules for external integrations."""

from .dispatch import DispatchClient

__all__ = ["DispatchClient"]
