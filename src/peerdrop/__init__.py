"""PeerDrop: text and file sharing over a manually negotiated peer channel."""

from .config import SessionConfig, load_config
from .errors import (
    ChannelNotOpenError,
    ConfigError,
    ConnectionFailedError,
    NegotiationError,
    PeerDropError,
    SenderBusyError,
)
from .files import BytesFileSource, FileSource, PathFileSource
from .messages import BlobHandle, FileInfo, FileMessage, MessageLog, Sender, TextMessage
from .session import ConnectionState, PeerSession, Role

__version__ = "0.1.0"

__all__ = [
    "SessionConfig",
    "load_config",
    "PeerDropError",
    "ConfigError",
    "NegotiationError",
    "ConnectionFailedError",
    "ChannelNotOpenError",
    "SenderBusyError",
    "FileSource",
    "PathFileSource",
    "BytesFileSource",
    "BlobHandle",
    "FileInfo",
    "FileMessage",
    "TextMessage",
    "MessageLog",
    "Sender",
    "ConnectionState",
    "PeerSession",
    "Role",
]
