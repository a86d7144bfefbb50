"""Error taxonomy for lspbridge.

Session-fatal errors (tear the whole session down):
- TransportError: the client channel or the process pipes closed or failed
- LSPFramingError: the byte stream can no longer be trusted
- ProcessError: the language server could not be spawned or died

Recoverable errors (affect a single unit):
- ProtocolError: one malformed header block or message body, dropped
- RequestTimeout: one pending request, rejected
- ServerError: a JSON-RPC error object returned for one request
"""

from __future__ import annotations

from typing import Any


class BridgeError(Exception):
    """Base class for all lspbridge errors."""


class TransportError(BridgeError):
    """Channel closed or failed."""


class LSPFramingError(TransportError):
    """Unrecoverable error in LSP message framing.

    Raised when:
    - Content-Length value is not a valid integer
    - Content-Length value is negative
    - A frame or header block exceeds the configured size limit
    - A message cannot be serialized to JSON
    """


class ConnectionLost(TransportError):
    """Session ended while a request was still pending."""


class ProcessError(BridgeError):
    """Language server spawn failure or unexpected exit."""


class ProtocolError(BridgeError):
    """A single malformed unit on the wire (header block or body)."""


class RequestTimeout(BridgeError, TimeoutError):
    """No response arrived before the request deadline."""

    def __init__(self, method: str, request_id: int, timeout: float) -> None:
        self.method = method
        self.request_id = request_id
        self.timeout = timeout
        super().__init__(
            f"Request {method} (id: {request_id}) timed out after {timeout:g} seconds"
        )


class ServerError(BridgeError):
    """JSON-RPC error object returned by the language server."""

    def __init__(self, code: int | None, message: str, data: Any = None) -> None:
        self.code = code
        self.message = message
        self.data = data
        super().__init__(message)

    @classmethod
    def from_error(cls, error: Any) -> ServerError:
        if not isinstance(error, dict):
            return cls(None, str(error))
        return cls(
            code=error.get("code"),
            message=str(error.get("message", "Unknown error")),
            data=error.get("data"),
        )
