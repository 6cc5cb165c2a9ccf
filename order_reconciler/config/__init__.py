"""Configuration package for the order reconciler."""
from .settings import get_settings, Settings

__all__ = ["Settings", "get_settings"]
