"""lspbridge: WebSocket-to-stdio Language Server Protocol bridge and client session."""

__version__ = "0.1.0"

# Public API
from lspbridge.client import (
    DiagnosticsStore,
    Document,
    DocumentManager,
    LanguageSession,
    Problem,
    RequestCorrelator,
    SessionState,
)
from lspbridge.config import Config, get_config, load_config
from lspbridge.errors import (
    BridgeError,
    ConnectionLost,
    LSPFramingError,
    ProcessError,
    ProtocolError,
    RequestTimeout,
    ServerError,
    TransportError,
)
from lspbridge.transport import (
    LanguageServerProcess,
    MessageChannel,
    ProcessChannel,
    WebSocketChannel,
)
from lspbridge.transport.lsp import FrameDecoder, encode_message

__all__ = [
    # Sessions
    "LanguageSession",
    "SessionState",
    "RequestCorrelator",
    "DocumentManager",
    "DiagnosticsStore",
    "Document",
    "Problem",
    # Transport
    "FrameDecoder",
    "encode_message",
    "LanguageServerProcess",
    "MessageChannel",
    "ProcessChannel",
    "WebSocketChannel",
    # Config
    "Config",
    "load_config",
    "get_config",
    # Errors
    "BridgeError",
    "ConnectionLost",
    "LSPFramingError",
    "ProcessError",
    "ProtocolError",
    "RequestTimeout",
    "ServerError",
    "TransportError",
]
