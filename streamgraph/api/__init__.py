"""HTTP control surface."""

from .server import create_app
from .state import AppState

__all__ = ["AppState", "create_app"]
