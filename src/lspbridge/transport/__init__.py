"""Transport layer: framing, language server processes and message channels."""

from lspbridge.transport.channel import MessageChannel, ProcessChannel, WebSocketChannel
from lspbridge.transport.process import LanguageServerProcess, build_argv

__all__ = [
    "LanguageServerProcess",
    "MessageChannel",
    "ProcessChannel",
    "WebSocketChannel",
    "build_argv",
]
