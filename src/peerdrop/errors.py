"""
Error types for PeerDrop sessions.

Every error carries a stable ``error_code`` so the UI layer can show a
diagnostic without matching on message text.
"""

from typing import Optional


class PeerDropError(Exception):
    """Base exception for peer session errors"""

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "UNKNOWN_ERROR"
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details
        }


class ConfigError(PeerDropError):
    """Invalid configuration value"""
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, "CONFIG_ERROR", details)


class NegotiationError(PeerDropError):
    """Malformed or rejected session description"""
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, "NEGOTIATION_ERROR", details)


class ConnectionFailedError(PeerDropError):
    """The underlying transport reported a failed connection"""
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, "CONNECTION_FAILED", details)


class ChannelNotOpenError(PeerDropError):
    """A send was attempted on a channel that is not open"""
    def __init__(self, ready_state: str):
        super().__init__(
            f"Channel is not open (state: {ready_state})",
            "CHANNEL_NOT_OPEN",
            {"ready_state": ready_state}
        )


class SenderBusyError(PeerDropError):
    """A file sender was asked to suspend while already suspended"""
    def __init__(self, file_name: str):
        super().__init__(
            f"Sender for {file_name!r} is already waiting for the channel to drain",
            "SENDER_BUSY",
            {"file_name": file_name}
        )


def describe_error(error: Exception) -> str:
    """Human readable one-liner for logs and the UI"""
    if isinstance(error, PeerDropError):
        return f"{error.error_code}: {error.message}"
    return f"{type(error).__name__}: {error}"
