"""LSP types consumed by the client session and the presentation layer.

Only the structures exchanged by the supported methods are modelled:
initialize, didOpen/didChange, hover, semanticTokens/full and
publishDiagnostics.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from lspbridge.errors import ProtocolError


class LspModel(BaseModel):
    """Base model for LSP types; accepts camelCase aliases and ignores unknown fields."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Position(LspModel):
    """Zero-based line/character position."""

    line: int
    character: int

    def as_tuple(self) -> tuple[int, int]:
        return (self.line, self.character)


class Range(LspModel):
    """Text range; containment checks include the end position."""

    start: Position
    end: Position

    def contains(self, line: int, character: int) -> bool:
        """True if the position lies within the range (end inclusive)."""
        return self.start.as_tuple() <= (line, character) <= self.end.as_tuple()


class DiagnosticSeverity(IntEnum):
    ERROR = 1
    WARNING = 2
    INFORMATION = 3
    HINT = 4


_SEVERITY_LABELS = {
    DiagnosticSeverity.ERROR: "error",
    DiagnosticSeverity.WARNING: "warning",
    DiagnosticSeverity.INFORMATION: "info",
    DiagnosticSeverity.HINT: "hint",
}


class Diagnostic(LspModel):
    """A reported issue anchored to a range of one document."""

    range: Range
    message: str
    severity: DiagnosticSeverity | None = None
    code: int | str | None = None
    source: str | None = None

    @property
    def severity_label(self) -> str:
        # Servers may omit severity; such diagnostics are shown as hints
        if self.severity is None:
            return "hint"
        return _SEVERITY_LABELS[self.severity]


class PublishDiagnosticsParams(LspModel):
    uri: str
    diagnostics: list[Diagnostic] = Field(default_factory=list)
    version: int | None = None


class TextDocumentItem(LspModel):
    uri: str
    language_id: str = Field(alias="languageId")
    version: int
    text: str


class SemanticTokensLegend(LspModel):
    token_types: list[str] = Field(default_factory=list, alias="tokenTypes")
    token_modifiers: list[str] = Field(default_factory=list, alias="tokenModifiers")


class InitializeResult(LspModel):
    """Result of the initialize handshake."""

    capabilities: dict[str, Any] = Field(default_factory=dict)
    server_info: dict[str, Any] | None = Field(default=None, alias="serverInfo")

    @property
    def semantic_tokens_legend(self) -> SemanticTokensLegend | None:
        provider = self.capabilities.get("semanticTokensProvider")
        if not isinstance(provider, dict) or "legend" not in provider:
            return None
        return SemanticTokensLegend.model_validate(provider["legend"])


class Hover(LspModel):
    """Hover result with contents flattened to plain strings."""

    contents: list[str] = Field(default_factory=list)
    range: Range | None = None

    @classmethod
    def from_result(cls, result: Any) -> Hover | None:
        """Build from a raw hover result; None when the server had nothing to say.

        Raises:
            ProtocolError: If the range is malformed.
        """
        if not isinstance(result, dict) or not result.get("contents"):
            return None

        raw = result["contents"]
        items = raw if isinstance(raw, list) else [raw]
        contents: list[str] = []
        for item in items:
            # MarkedString is either a string or {language, value};
            # MarkupContent is {kind, value}
            if isinstance(item, str):
                text = item
            elif isinstance(item, dict):
                text = str(item.get("value", ""))
            else:
                continue
            if text:
                contents.append(text)

        if not contents:
            return None

        hover_range = None
        if result.get("range"):
            try:
                hover_range = Range.model_validate(result["range"])
            except ValidationError as e:
                raise ProtocolError(f"Invalid hover range: {e}") from e
        return cls(contents=contents, range=hover_range)


@dataclass(frozen=True)
class SemanticToken:
    """One decoded semantic token, in absolute coordinates."""

    line: int
    start: int
    length: int
    token_type: str
    modifiers: tuple[str, ...] = ()


def decode_semantic_tokens(
    data: list[int], legend: SemanticTokensLegend
) -> list[SemanticToken]:
    """Decode the relative five-integer encoding of semanticTokens/full.

    Each token is (deltaLine, deltaStart, length, tokenType, tokenModifiers);
    deltaStart is relative to the previous token only when on the same line.
    Type indexes outside the legend decode as "unknown".

    Raises:
        ProtocolError: If the array length is not a multiple of five or an
            entry is not an integer.
    """
    if len(data) % 5:
        raise ProtocolError(f"Semantic token data length {len(data)} is not a multiple of 5")
    if not all(isinstance(v, int) and not isinstance(v, bool) for v in data):
        raise ProtocolError("Semantic token data must contain only integers")

    tokens: list[SemanticToken] = []
    line = 0
    start = 0
    for i in range(0, len(data), 5):
        delta_line, delta_start, length, type_index, modifier_bits = data[i : i + 5]
        if delta_line:
            line += delta_line
            start = delta_start
        else:
            start += delta_start

        if 0 <= type_index < len(legend.token_types):
            token_type = legend.token_types[type_index]
        else:
            token_type = "unknown"

        modifiers = tuple(
            name
            for bit, name in enumerate(legend.token_modifiers)
            if modifier_bits & (1 << bit)
        )
        tokens.append(SemanticToken(line, start, length, token_type, modifiers))

    return tokens
