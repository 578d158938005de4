"""
codebase_context: persistent semantic + identifier index of a source tree.

Public API for library usage::

    from codebase_context import open_session, index_tree, search

    with open_session(".cache/codebase.db") as session:
        summary = index_tree(session, ".")
        results = search(session, "symbol used in the checkout page", k=3)
"""

__version__ = "1.0.0"

from .errors import (
    ContextIndexError,
    DimensionMismatch,
    EmbeddingUnavailable,
    ParseFailure,
    StoreTransactionFailure,
    StoreUnavailable,
)
from .models import RefType, SearchResult, VariableReference
from .session import (
    ContextSession,
    close,
    context_for,
    index_file,
    index_tree,
    initialize,
    open_session,
    remove_file,
    search,
)

__all__ = [
    "ContextIndexError",
    "ContextSession",
    "DimensionMismatch",
    "EmbeddingUnavailable",
    "ParseFailure",
    "RefType",
    "SearchResult",
    "StoreTransactionFailure",
    "StoreUnavailable",
    "VariableReference",
    "close",
    "context_for",
    "index_file",
    "index_tree",
    "initialize",
    "open_session",
    "remove_file",
    "search",
]
