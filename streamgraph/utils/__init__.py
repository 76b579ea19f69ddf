"""Utility helpers for the streaming graph service."""

from .files import atomic_write_text, read_json, write_json
from .logging import configure_logging

__all__ = ["atomic_write_text", "configure_logging", "read_json", "write_json"]
