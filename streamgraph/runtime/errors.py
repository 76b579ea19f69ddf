"""Launch failures shared by the supervisor and the container orchestrator."""

from __future__ import annotations


class LaunchError(RuntimeError):
    """Raised when a session cannot be started."""


class ResourceBusyError(LaunchError):
    """Raised when the GPU or container name is held by another session."""

    retryable = True


class SocketTimeoutError(LaunchError):
    """Raised when the compositor never exposes its display socket."""


__all__ = ["LaunchError", "ResourceBusyError", "SocketTimeoutError"]
