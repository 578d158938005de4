"""
Data classes shared by the extractor, store, indexer and retriever.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional


class RefType(str, enum.Enum):
    """How an identifier occurrence relates to the file it appears in."""

    DECLARATION = "declaration"
    IMPORT = "import"
    EXPORT = "export"
    USAGE = "usage"


@dataclass(frozen=True)
class VariableReference:
    """A single identifier occurrence extracted from a source file."""
    variable_name: str
    file_path: str
    line_number: int                  # 1-based
    ref_type: RefType
    source_path: Optional[str] = None  # module specifier, imports only


@dataclass
class Document:
    """A stored file: its text, embedding and last write time."""
    path: str
    content: str
    embedding: list[float]
    last_updated: str
    content_hash: str = ""
    language: str = ""


@dataclass
class StoredDocument:
    """A :class:`Document` joined with every reference it owns."""
    document: Document
    references: list[VariableReference] = field(default_factory=list)

    @property
    def path(self) -> str:
        return self.document.path


@dataclass
class SearchResult:
    """
    A single ranked search hit.

    Attributes
    ----------
    path:
        Path of the matched document.
    content:
        Full stored text of the document.
    score:
        Cosine similarity between the query and the document (-1 to 1).
    variables:
        Aggregated references: ``{name: [{"line", "type", "source"}, ...]}``.
    """

    path: str
    content: str
    score: float
    variables: dict[str, list[dict]] = field(default_factory=dict)


@dataclass
class FileFailure:
    """A file that could not be indexed, and why."""
    path: str
    error: str
    kind: str


@dataclass
class IndexSummary:
    """Final tally of an indexing run."""
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    failures: list[FileFailure] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def total(self) -> int:
        return self.processed + self.skipped + self.failed

    def as_dict(self) -> dict:
        return {
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "failures": [
                {"path": f.path, "error": f.error, "kind": f.kind}
                for f in self.failures
            ],
            "elapsed_seconds": self.elapsed_seconds,
        }
