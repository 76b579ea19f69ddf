"""
Session runtime: process supervision, health probing, pairing and containers.
"""

from .errors import LaunchError, ResourceBusyError, SocketTimeoutError
from .pairing import PairingClient, PairingError, PinFormatError, normalize_pin
from .supervisor import SessionManager, SessionMode, SessionRequest, SessionStatus, SessionSupervisor

__all__ = [
    "LaunchError",
    "PairingClient",
    "PairingError",
    "PinFormatError",
    "ResourceBusyError",
    "SessionManager",
    "SessionMode",
    "SessionRequest",
    "SessionStatus",
    "SessionSupervisor",
    "SocketTimeoutError",
    "normalize_pin",
]
