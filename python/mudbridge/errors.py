"""Exceptions raised by the MUD bridge session layer."""

from __future__ import annotations


class BridgeError(RuntimeError):
    pass


class ConfigError(BridgeError):
    pass


class ConnectionFailedError(BridgeError):
    """The socket to the MUD could not be opened."""


class ConnectionClosedError(BridgeError):
    """The connection went away while a caller was waiting on it."""


class HandshakeError(BridgeError):
    """The server rejected the login sequence or it did not finish in time."""


class NotConnectedError(BridgeError):
    def __init__(self, message: str = "Not connected to MUD") -> None:
        super().__init__(message)


class RequestPendingError(BridgeError):
    def __init__(self, message: str = "A command is already pending; wait for its reply") -> None:
        super().__init__(message)


class RequestTimeoutError(BridgeError):
    pass
