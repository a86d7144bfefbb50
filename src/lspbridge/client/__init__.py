"""Client-side LSP session: request correlation, documents and diagnostics."""

from lspbridge.client.correlator import PendingRequest, RequestCorrelator
from lspbridge.client.documents import DiagnosticsStore, Document, DocumentManager, Problem
from lspbridge.client.session import LanguageSession, SessionState

__all__ = [
    "DiagnosticsStore",
    "Document",
    "DocumentManager",
    "LanguageSession",
    "PendingRequest",
    "Problem",
    "RequestCorrelator",
    "SessionState",
]
