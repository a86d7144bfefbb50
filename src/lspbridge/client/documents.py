"""Open-document synchronization and diagnostic aggregation.

Documents use whole-text sync: every change sends the complete new text.
Diagnostics are stored per URI and replaced wholesale on each publish; the
flattened problem list across all URIs is recomputed after every publish.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from lspbridge import __version__
from lspbridge.client.correlator import RequestCorrelator
from lspbridge.errors import ProtocolError
from lspbridge.protocol.types import (
    Diagnostic,
    Hover,
    InitializeResult,
    PublishDiagnosticsParams,
    SemanticToken,
    SemanticTokensLegend,
    TextDocumentItem,
    decode_semantic_tokens,
)

log = logging.getLogger(__name__)

CLIENT_NAME = "lspbridge"

DiagnosticsCallback = Callable[[str, list[Diagnostic]], None]


@dataclass
class Document:
    """An open document. Version starts at 1 and grows by one per change."""

    uri: str
    language_id: str
    version: int
    text: str


@dataclass(frozen=True)
class Problem:
    """One row of the cross-document problem list (1-based line/column)."""

    uri: str
    line: int
    column: int
    severity: str
    message: str
    code: str | None = None

    @classmethod
    def from_diagnostic(cls, uri: str, diagnostic: Diagnostic) -> Problem:
        return cls(
            uri=uri,
            line=diagnostic.range.start.line + 1,
            column=diagnostic.range.start.character + 1,
            severity=diagnostic.severity_label,
            message=diagnostic.message,
            code=str(diagnostic.code) if diagnostic.code is not None else None,
        )


class DiagnosticsStore:
    """Latest published diagnostics per URI, plus the flattened view."""

    def __init__(self) -> None:
        self._by_uri: dict[str, list[Diagnostic]] = {}
        self._problems: list[Problem] = []
        self._callbacks: list[DiagnosticsCallback] = []

    def replace(self, uri: str, diagnostics: list[Diagnostic]) -> None:
        """Replace the set for `uri` (never merged) and notify subscribers."""
        if diagnostics:
            self._by_uri[uri] = list(diagnostics)
        else:
            self._by_uri.pop(uri, None)
        self._problems = self._aggregate()

        for callback in list(self._callbacks):
            try:
                callback(uri, list(diagnostics))
            except Exception:
                log.exception("Diagnostics subscriber failed for %s", uri)

    def get(self, uri: str) -> list[Diagnostic]:
        return list(self._by_uri.get(uri, []))

    def uris(self) -> list[str]:
        return sorted(self._by_uri)

    @property
    def problems(self) -> list[Problem]:
        """All current diagnostics, ordered by uri, line, column."""
        return list(self._problems)

    def at(self, uri: str, line: int, character: int) -> list[Diagnostic]:
        """Diagnostics of `uri` whose range contains the position."""
        return [d for d in self._by_uri.get(uri, []) if d.range.contains(line, character)]

    def subscribe(self, callback: DiagnosticsCallback) -> Callable[[], None]:
        """Register a callback for every publish.

        Returns:
            A function to unregister the callback.
        """
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def clear(self) -> None:
        self._by_uri.clear()
        self._problems = []

    def _aggregate(self) -> list[Problem]:
        problems = [
            Problem.from_diagnostic(uri, diagnostic)
            for uri, diagnostics in self._by_uri.items()
            for diagnostic in diagnostics
        ]
        problems.sort(key=lambda p: (p.uri, p.line, p.column))
        return problems


class DocumentManager:
    """Tracks open documents and issues the document-level LSP traffic."""

    def __init__(
        self,
        correlator: RequestCorrelator,
        diagnostics: DiagnosticsStore | None = None,
    ) -> None:
        self._correlator = correlator
        self.diagnostics = diagnostics or DiagnosticsStore()
        self._documents: dict[str, Document] = {}
        self._init_lock = asyncio.Lock()
        self._init_result: InitializeResult | None = None
        self._legend: SemanticTokensLegend | None = None

    @property
    def initialized(self) -> bool:
        return self._init_result is not None

    @property
    def server_capabilities(self) -> dict[str, Any]:
        return self._init_result.capabilities if self._init_result else {}

    @property
    def legend(self) -> SemanticTokensLegend | None:
        """Semantic token legend fixed by the initialize handshake."""
        return self._legend

    async def initialize(self) -> InitializeResult:
        """Run the initialize/initialized handshake once.

        Later and concurrent calls return the first result without sending anything.

        Raises:
            ProtocolError: If the initialize result does not validate.
        """
        async with self._init_lock:
            if self._init_result is not None:
                return self._init_result

            raw = await self._correlator.send_request("initialize", _initialize_params())
            try:
                result = InitializeResult.model_validate(raw or {})
                legend = result.semantic_tokens_legend
            except ValidationError as e:
                raise ProtocolError(f"Invalid initialize result: {e}") from e
            await self._correlator.send_notification("initialized", {})

            self._init_result = result
            self._legend = legend
            log.info(
                "Language server initialized (semantic tokens: %s)",
                "yes" if self._legend else "no",
            )
            return result

    def get(self, uri: str) -> Document | None:
        return self._documents.get(uri)

    @property
    def documents(self) -> list[Document]:
        return list(self._documents.values())

    async def open(self, uri: str, language_id: str, text: str) -> Document:
        """Register a document at version 1 and send didOpen with the full text.

        Raises:
            ValueError: If the document is already open.
        """
        if uri in self._documents:
            raise ValueError(f"Document already open: {uri}")

        document = Document(uri=uri, language_id=language_id, version=1, text=text)
        self._documents[uri] = document

        item = TextDocumentItem(uri=uri, language_id=language_id, version=1, text=text)
        await self._correlator.send_notification(
            "textDocument/didOpen",
            {"textDocument": item.model_dump(by_alias=True)},
        )
        return document

    async def apply_change(self, uri: str, new_text: str) -> Document:
        """Bump the version, replace the text and send didChange with the full text.

        Raises:
            KeyError: If the document is not open.
        """
        document = self._documents.get(uri)
        if document is None:
            raise KeyError(f"Document not open: {uri}")

        document.version += 1
        document.text = new_text

        await self._correlator.send_notification(
            "textDocument/didChange",
            {
                "textDocument": {"uri": uri, "version": document.version},
                "contentChanges": [{"text": new_text}],
            },
        )
        return document

    def close(self, uri: str) -> Document | None:
        """Forget a document locally. Its diagnostics stay until republished."""
        return self._documents.pop(uri, None)

    def on_publish_diagnostics(self, params: Any) -> None:
        """Store a textDocument/publishDiagnostics payload.

        Raises:
            ProtocolError: If the payload does not validate.
        """
        try:
            published = PublishDiagnosticsParams.model_validate(params)
        except ValidationError as e:
            raise ProtocolError(f"Invalid publishDiagnostics params: {e}") from e

        log.debug("%d diagnostic(s) for %s", len(published.diagnostics), published.uri)
        self.diagnostics.replace(published.uri, published.diagnostics)

    async def hover(self, uri: str, line: int, character: int) -> Hover | None:
        """Request hover information; None when the server returns no content."""
        result = await self._correlator.send_request(
            "textDocument/hover",
            {
                "textDocument": {"uri": uri},
                "position": {"line": line, "character": character},
            },
        )
        return Hover.from_result(result)

    async def hover_with_fallback(self, uri: str, line: int, character: int) -> Hover | None:
        """Hover, falling back to the diagnostics under the position.

        This is a display policy: the server is asked first, and only an
        empty answer is replaced by the stored diagnostic messages.
        """
        hover = await self.hover(uri, line, character)
        if hover is not None:
            return hover

        matches = self.diagnostics.at(uri, line, character)
        if not matches:
            return None
        return Hover(
            contents=[f"**{d.severity_label.capitalize()}**: {d.message}" for d in matches],
            range=matches[0].range,
        )

    async def semantic_tokens(self, uri: str) -> list[SemanticToken]:
        """Request full-document semantic tokens and decode them with the legend.

        Raises:
            RuntimeError: Before initialize(), or if the server has no legend.
            ProtocolError: If the token data is malformed.
        """
        if not self.initialized:
            raise RuntimeError("Session not initialized")
        if self._legend is None:
            raise RuntimeError("Language server does not provide semantic tokens")

        result = await self._correlator.send_request(
            "textDocument/semanticTokens/full",
            {"textDocument": {"uri": uri}},
        )
        if not isinstance(result, dict):
            return []
        data = result.get("data") or []
        if not isinstance(data, list):
            raise ProtocolError(f"Semantic token data must be an array, got {type(data).__name__}")
        return decode_semantic_tokens(data, self._legend)


def _initialize_params() -> dict[str, Any]:
    return {
        "processId": os.getpid(),
        "clientInfo": {"name": CLIENT_NAME, "version": __version__},
        "rootUri": None,
        "workspaceFolders": None,
        "capabilities": {
            "textDocument": {
                "synchronization": {
                    "dynamicRegistration": False,
                    "willSave": False,
                    "willSaveWaitUntil": False,
                    "didSave": False,
                },
                "hover": {
                    "dynamicRegistration": False,
                    "contentFormat": ["markdown", "plaintext"],
                },
                "publishDiagnostics": {"relatedInformation": False},
                "semanticTokens": {
                    "dynamicRegistration": False,
                    "requests": {"full": True},
                    "tokenTypes": [],
                    "tokenModifiers": [],
                    "formats": ["relative"],
                },
            },
        },
    }
