"""JSON-RPC 2.0 message helper."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

JSONRPC_VERSION = "2.0"


@dataclass
class JsonRpcMessage:
    """Parsed JSON-RPC message.

    `has_result` records whether a "result" key was present, since a
    response may legitimately carry `"result": null` (e.g. an empty hover).
    """

    jsonrpc: str = JSONRPC_VERSION
    id: int | str | None = None
    method: str | None = None
    params: Any = None
    result: Any = None
    error: dict[str, Any] | None = None
    has_result: bool = False

    def is_request(self) -> bool:
        """Check if this is a request (has method and id)."""
        return self.method is not None and self.id is not None

    def is_notification(self) -> bool:
        """Check if this is a notification (has method but no id)."""
        return self.method is not None and self.id is None

    def is_response(self) -> bool:
        """Check if this is a response (has id, result or error, no method)."""
        return self.method is None and (self.has_result or self.error is not None)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        d: dict[str, Any] = {"jsonrpc": self.jsonrpc}
        if self.id is not None or self.is_response():
            d["id"] = self.id
        if self.method is not None:
            d["method"] = self.method
        if self.params is not None:
            d["params"] = self.params
        if self.error is not None:
            d["error"] = self.error
        elif self.has_result:
            d["result"] = self.result
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JsonRpcMessage:
        """Parse from dictionary."""
        return cls(
            jsonrpc=data.get("jsonrpc", JSONRPC_VERSION),
            id=data.get("id"),
            method=data.get("method"),
            params=data.get("params"),
            result=data.get("result"),
            error=data.get("error"),
            has_result="result" in data,
        )

    @classmethod
    def request(cls, request_id: int, method: str, params: Any = None) -> JsonRpcMessage:
        return cls(id=request_id, method=method, params=params)

    @classmethod
    def notification(cls, method: str, params: Any = None) -> JsonRpcMessage:
        return cls(method=method, params=params)

    @classmethod
    def response(cls, request_id: int | str | None, result: Any = None) -> JsonRpcMessage:
        return cls(id=request_id, result=result, has_result=True)
