"""LSP message framing with Content-Length headers.

This module implements the LSP base protocol framing used on the
language-server side of the bridge:
- Header parsing (Content-Length required, other headers ignored)
- Incremental decoding of an arbitrarily chunked byte stream
- Message encoding with Content-Length framing

LSP Header Format:
    Content-Length: <length>\r\n
    [Content-Type: <type>]\r\n
    \r\n
    <json-rpc-message>

The Content-Length header is required and specifies the byte count
of the JSON-RPC message body. Headers are separated from the body
by a blank line (double CRLF).
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any

from lspbridge.errors import LSPFramingError, ProtocolError
from lspbridge.logging import TRACE

log = logging.getLogger(__name__)

# Header constants
CONTENT_LENGTH = "Content-Length"
HEADER_ENCODING = "ascii"
CONTENT_ENCODING = "utf-8"
HEADER_SEPARATOR = b"\r\n\r\n"

DEFAULT_MAX_MESSAGE_SIZE = 10 * 1024 * 1024  # 10 MB
DEFAULT_MAX_HEADER_SIZE = 64 * 1024
_LENGTH_PATTERN = re.compile(r"-?[0-9]+")

# Consumed bytes are dropped from the buffer once the cursor passes this offset
COMPACT_THRESHOLD = 64 * 1024


def parse_header(header_bytes: bytes) -> dict[str, str]:
    """Parse LSP headers from raw bytes.

    Args:
        header_bytes: Raw header bytes (without trailing CRLF CRLF separator).
            Should contain lines like "Content-Length: 123\r\nContent-Type: ..."

    Returns:
        Dictionary mapping header names to values.

    Raises:
        ProtocolError: If the block is empty, malformed or has no Content-Length.
            The block can be skipped and decoding resumed.
        LSPFramingError: If Content-Length is present but invalid. The stream
            position of the next frame is unknown, so this is fatal.

    Example:
        >>> header = b"Content-Length: 42\\r\\nContent-Type: application/json"
        >>> parse_header(header)
        {'Content-Length': '42', 'Content-Type': 'application/json'}
    """
    headers: dict[str, str] = {}

    if not header_bytes.strip():
        raise ProtocolError("Empty header block")

    try:
        header_text = header_bytes.decode(HEADER_ENCODING)
    except UnicodeDecodeError as e:
        raise ProtocolError(f"Header contains non-ASCII characters: {e}") from e

    for line in header_text.split("\r\n"):
        if not line:
            continue

        colon_pos = line.find(":")
        if colon_pos == -1:
            raise ProtocolError(f"Malformed header line (no colon): {line!r}")

        name = line[:colon_pos].strip()
        value = line[colon_pos + 1 :].strip()

        if not name:
            raise ProtocolError(f"Empty header name in line: {line!r}")

        headers[name] = value

    if CONTENT_LENGTH not in headers:
        raise ProtocolError("Missing required Content-Length header")

    value = headers[CONTENT_LENGTH]
    if not _LENGTH_PATTERN.fullmatch(value):
        raise LSPFramingError(f"Invalid Content-Length value: {value!r}")

    if int(value) < 0:
        raise LSPFramingError(f"Negative Content-Length: {int(value)}")

    return headers


def encode_message(msg: dict[str, Any]) -> bytes:
    """Encode a JSON-RPC message as one Content-Length frame.

    The length is the UTF-8 byte count of the body, not its character count.

    Raises:
        LSPFramingError: If the message cannot be serialized to JSON.
    """
    try:
        body = json.dumps(msg, separators=(",", ":"), ensure_ascii=False)
        body_bytes = body.encode(CONTENT_ENCODING)
    except (TypeError, ValueError) as e:
        raise LSPFramingError(f"Message cannot be serialized to JSON: {e}") from e

    header = f"{CONTENT_LENGTH}: {len(body_bytes)}\r\n\r\n"
    return header.encode(HEADER_ENCODING) + body_bytes


async def write_message(
    writer: asyncio.StreamWriter,
    msg: dict[str, Any],
    *,
    drain: bool = True,
) -> None:
    """Write a JSON-RPC message with Content-Length framing.

    Args:
        writer: Async stream writer to write to.
        msg: JSON-RPC message to send (must be a JSON-serializable dict).
        drain: If True, wait for the message to be flushed to the OS buffer.

    Raises:
        LSPFramingError: If the message cannot be serialized to JSON.
    """
    # Header and body go out in one write so frames never interleave
    writer.write(encode_message(msg))

    if drain:
        await writer.drain()


def parse_body(body_bytes: bytes) -> dict[str, Any]:
    """Decode one frame body into a JSON-RPC message.

    Raises:
        ProtocolError: If the body is not UTF-8 JSON describing an object.
    """
    try:
        content = body_bytes.decode(CONTENT_ENCODING)
    except UnicodeDecodeError as e:
        raise ProtocolError(f"Invalid UTF-8 in message body: {e}") from e

    try:
        message = json.loads(content)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid JSON in message body: {e}") from e

    if not isinstance(message, dict):
        raise ProtocolError(f"JSON-RPC message must be an object, got {type(message).__name__}")

    return message


class FrameDecoder:
    """Incremental decoder for a Content-Length framed byte stream.

    Bytes are appended to a single buffer and consumed through a read
    cursor. The consumed prefix is dropped only when the buffer has been
    fully read or the cursor passes COMPACT_THRESHOLD, so a large frame
    arriving in many small chunks is not re-copied on every chunk.

    Example:
        >>> decoder = FrameDecoder()
        >>> decoder.feed(b"Content-Length: 7\\r\\n\\r\\n{\\"a\\"")
        []
        >>> decoder.feed(b":1}")
        [{'a': 1}]
    """

    def __init__(
        self,
        *,
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
        max_header_size: int = DEFAULT_MAX_HEADER_SIZE,
    ) -> None:
        self.max_message_size = max_message_size
        self.max_header_size = max_header_size
        self._buffer = bytearray()
        self._cursor = 0

    @property
    def buffered(self) -> int:
        """Number of received bytes not yet consumed."""
        return len(self._buffer) - self._cursor

    def reset(self) -> None:
        self._buffer.clear()
        self._cursor = 0

    def feed(self, data: bytes) -> list[dict[str, Any]]:
        """Append a chunk and return every message it completes.

        Never returns a partial message: a frame is emitted only once its
        whole body is buffered. Malformed units are logged and skipped.

        Raises:
            LSPFramingError: On a corrupt Content-Length or when a frame
                exceeds the size limits.
        """
        self._buffer += data
        messages: list[dict[str, Any]] = []

        while True:
            header_end = self._buffer.find(HEADER_SEPARATOR, self._cursor)
            if header_end == -1:
                if self.buffered > self.max_header_size:
                    raise LSPFramingError(
                        f"No header terminator within {self.max_header_size} bytes"
                    )
                break

            header_bytes = bytes(self._buffer[self._cursor : header_end])
            body_start = header_end + len(HEADER_SEPARATOR)

            try:
                headers = parse_header(header_bytes)
            except ProtocolError as e:
                log.warning("Dropping invalid LSP header block %r: %s", header_bytes[:200], e)
                self._cursor = body_start
                continue

            content_length = int(headers[CONTENT_LENGTH])
            if content_length > self.max_message_size:
                raise LSPFramingError(
                    f"Message size {content_length} exceeds maximum {self.max_message_size}"
                )

            body_end = body_start + content_length
            if len(self._buffer) < body_end:
                log.log(
                    TRACE,
                    "Waiting for more data. Have %d, need %d",
                    len(self._buffer) - self._cursor,
                    body_end - self._cursor,
                )
                break

            body_bytes = bytes(self._buffer[body_start:body_end])
            self._cursor = body_end

            try:
                messages.append(parse_body(body_bytes))
            except ProtocolError as e:
                log.warning("Dropping invalid LSP message body: %s", e)

        self._compact()
        return messages

    def _compact(self) -> None:
        if self._cursor == len(self._buffer):
            self._buffer.clear()
            self._cursor = 0
        elif self._cursor >= COMPACT_THRESHOLD:
            del self._buffer[: self._cursor]
            self._cursor = 0
