"""Per-root language server connections.

Example:
    from rootmux.lsp import ConnectionRegistry, WebSocketTransport, SessionBootstrap

    registry = ConnectionRegistry(
        WebSocketTransport("ws://localhost:4288"),
        SessionBootstrap(config.bootstrap),
    )
    await registry.reconcile(["file:///work/project/"])
    handle = await registry.get("file:///work/project/")
"""

from .bootstrap import SessionBootstrap
from .documents import FileSource, LocalFileSource, TextDocument
from .features import Hover, LanguageFeatures, Location, Position, Range
from .registry import (
    ConnectionCancelledError,
    ConnectionHandle,
    ConnectionRegistry,
    ConnectionState,
    ConnectionStatus,
    ConnectionUpdated,
    Initializer,
    RootNotReadyError,
)
from .roots import RootSource, RootSubscription, WorkspaceRoots
from .settings import SettingsSync
from .transport import (
    ConnectionClosedError,
    MessageConnection,
    Transport,
    TransportSession,
    WebSocketTransport,
)
from .uri import UriConverter

__all__ = [
    "ConnectionCancelledError",
    "ConnectionClosedError",
    "ConnectionHandle",
    "ConnectionRegistry",
    "ConnectionState",
    "ConnectionStatus",
    "ConnectionUpdated",
    "FileSource",
    "Hover",
    "Initializer",
    "LanguageFeatures",
    "LocalFileSource",
    "Location",
    "MessageConnection",
    "Position",
    "Range",
    "RootNotReadyError",
    "RootSource",
    "RootSubscription",
    "SessionBootstrap",
    "SettingsSync",
    "TextDocument",
    "Transport",
    "TransportSession",
    "UriConverter",
    "WebSocketTransport",
    "WorkspaceRoots",
]
