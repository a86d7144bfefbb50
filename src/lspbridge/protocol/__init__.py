"""Wire-level types: JSON-RPC messages and the LSP structures we consume."""

from lspbridge.protocol.jsonrpc import JsonRpcMessage
from lspbridge.protocol.types import (
    Diagnostic,
    DiagnosticSeverity,
    Hover,
    InitializeResult,
    Position,
    PublishDiagnosticsParams,
    Range,
    SemanticToken,
    SemanticTokensLegend,
    TextDocumentItem,
    decode_semantic_tokens,
)

__all__ = [
    "JsonRpcMessage",
    "Diagnostic",
    "DiagnosticSeverity",
    "Hover",
    "InitializeResult",
    "Position",
    "PublishDiagnosticsParams",
    "Range",
    "SemanticToken",
    "SemanticTokensLegend",
    "TextDocumentItem",
    "decode_semantic_tokens",
]
