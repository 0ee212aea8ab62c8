"""AuthBridge exception hierarchy."""

from __future__ import annotations


class AuthBridgeError(Exception):
    """Base exception for all AuthBridge errors."""


class ConfigError(AuthBridgeError):
    """Raised when the configuration is invalid or cannot be read."""


class ConfigNotFoundError(ConfigError):
    """Raised when an explicitly requested configuration file does not exist."""


class SessionError(AuthBridgeError):
    """Raised when session management fails."""


class DuplicateCookieError(SessionError):
    """Raised when a begin request reuses the cookie of an active session."""

    def __init__(self, cookie: str) -> None:
        super().__init__(f"An authentication session with cookie {cookie!r} is already active")
        self.cookie = cookie


class SessionCancelledError(SessionError):
    """Raised inside a session task once the session has been cancelled."""


class HelperError(AuthBridgeError):
    """Raised when the helper subprocess cannot be driven."""


class DriverStateError(HelperError):
    """Raised when a driver operation is called in the wrong protocol state."""


class BusError(AuthBridgeError):
    """Raised when the bus connector fails."""


class RegistrationError(BusError):
    """Raised when registering with (or unregistering from) polkitd fails."""
