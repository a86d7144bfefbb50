"""Content-Length framing for the language-server side of the bridge."""

from lspbridge.transport.lsp.framing import (
    FrameDecoder,
    encode_message,
    parse_body,
    parse_header,
    write_message,
)

__all__ = [
    "FrameDecoder",
    "encode_message",
    "parse_body",
    "parse_header",
    "write_message",
]
