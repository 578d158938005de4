"""
Semantic search over the context store.

Embeds the query once, scores every stored document by cosine similarity
in a single numpy pass, attaches each document's aggregated variable
references, and returns the top-k.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from typing import Iterable, Optional, Sequence

import numpy as np

from .config import Config
from .errors import EmbeddingUnavailable
from .models import SearchResult, StoredDocument, VariableReference
from .store import ContextStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Similarity
# ---------------------------------------------------------------------------

def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Return ``dot(a, b) / (norm(a) * norm(b))``.

    Raises
    ------
    ValueError
        If the vectors differ in length or either has zero norm, where
        the similarity is undefined.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"vector shapes differ: {va.shape} vs {vb.shape}")
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        raise ValueError("cosine similarity is undefined for a zero vector")
    return float(np.clip(np.dot(va, vb) / (norm_a * norm_b), -1.0, 1.0))


def _score_documents(
    query: np.ndarray,
    documents: list[StoredDocument],
) -> list[tuple[int, float]]:
    """
    Score every document against *query* in one matrix product.

    Returns ``(index, score)`` pairs in store order.  Documents whose
    vector has zero norm or the wrong length are excluded.
    """
    query_norm = np.linalg.norm(query)
    if query_norm == 0:
        raise ValueError("cosine similarity is undefined for a zero query vector")

    usable: list[int] = []
    rows: list[np.ndarray] = []
    for idx, doc in enumerate(documents):
        vec = np.asarray(doc.document.embedding, dtype=np.float64)
        if vec.shape != query.shape:
            logger.warning(
                "Skipping %s: embedding has %d dimensions, query has %d",
                doc.path, vec.size, query.size,
            )
            continue
        usable.append(idx)
        rows.append(vec)

    if not rows:
        return []

    matrix = np.stack(rows)
    row_norms = np.linalg.norm(matrix, axis=1)
    keep = row_norms > 0
    for pos in np.flatnonzero(~keep):
        logger.warning("Skipping %s: zero-norm embedding", documents[usable[pos]].path)

    scores = (matrix[keep] @ query) / (row_norms[keep] * query_norm)
    scores = np.clip(scores, -1.0, 1.0)
    kept = [idx for idx, ok in zip(usable, keep) if ok]
    return [(idx, float(score)) for idx, score in zip(kept, scores)]


# ---------------------------------------------------------------------------
# Reference aggregation
# ---------------------------------------------------------------------------

def aggregate_references(
    references: Iterable[VariableReference],
    ignored_names: Iterable[str] = (),
    min_occurrences: int = 1,
) -> dict[str, list[dict]]:
    """
    Group references by variable name.

    Names in *ignored_names* and names seen fewer than *min_occurrences*
    times in this document are dropped.

    Returns
    -------
    dict[str, list[dict]]
        ``{name: [{"line": int, "type": str, "source": str | None}, ...]}``
        with names in first-seen order.
    """
    ignored = set(ignored_names)
    refs = [r for r in references if r.variable_name and r.variable_name not in ignored]
    counts = Counter(r.variable_name for r in refs)

    grouped: dict[str, list[dict]] = {}
    for ref in refs:
        if counts[ref.variable_name] < min_occurrences:
            continue
        grouped.setdefault(ref.variable_name, []).append({
            "line": ref.line_number,
            "type": ref.ref_type.value,
            "source": ref.source_path,
        })
    return grouped


# ---------------------------------------------------------------------------
# Retriever
# ---------------------------------------------------------------------------

class Retriever:
    """
    Ranks stored documents against a natural-language query.

    Parameters
    ----------
    store:
        Open context store.
    embedder:
        Any object with an ``embed(text) -> list[float]`` method; must be
        the same model the documents were embedded with.
    ignored_names:
        Identifier names never surfaced in aggregated references.
    min_occurrences:
        Minimum number of occurrences of a name within one document for it
        to be surfaced.
    """

    def __init__(
        self,
        store: ContextStore,
        embedder,
        ignored_names: Optional[Iterable[str]] = None,
        min_occurrences: int = 1,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._ignored = frozenset(
            Config().IGNORED_NAMES if ignored_names is None else ignored_names
        )
        self._min_occurrences = max(1, min_occurrences)

    @classmethod
    def from_config(cls, store: ContextStore, embedder, config: Config) -> "Retriever":
        return cls(
            store,
            embedder,
            ignored_names=config.IGNORED_NAMES,
            min_occurrences=config.MIN_OCCURRENCES,
        )

    def search(self, query: str, k: int = 5) -> list[SearchResult]:
        """
        Return at most *k* documents ranked by similarity to *query*.

        Parameters
        ----------
        query:
            Free text (a question, a diff, a symbol description...).
        k:
            Result count; clamped to ``[1, number of documents]``.

        Returns
        -------
        list[SearchResult]
            Sorted by score descending; ties keep store order.  Empty when
            the store holds no documents.

        Raises
        ------
        EmbeddingUnavailable
            If the query cannot be embedded, or its length differs from the
            stored vectors.
        StoreUnavailable
            If the store cannot be read.
        """
        t0 = time.perf_counter()
        documents = self._store.all()
        if not documents:
            logger.info("Store is empty; no results for query")
            return []

        preview = query[:100] + ("..." if len(query) > 100 else "")
        logger.debug("Query: %r", preview)

        query_vec = np.asarray(self._embedder.embed(query), dtype=np.float64)
        if query_vec.ndim != 1 or not np.any(query_vec):
            raise EmbeddingUnavailable("Query embedding is empty or all zeros")
        expected = self._store.dimensions
        if expected is not None and query_vec.size != expected:
            raise EmbeddingUnavailable(
                f"Query embedding has {query_vec.size} dimensions, store expects "
                f"{expected}; was the embedding model changed?"
            )
        scored = _score_documents(query_vec, documents)
        if not scored:
            return []

        limit = max(1, min(k, len(scored)))
        # sorted() is stable, also with reverse=True
        ranked = sorted(scored, key=lambda pair: pair[1], reverse=True)[:limit]

        results = []
        for idx, score in ranked:
            doc = documents[idx]
            results.append(SearchResult(
                path=doc.path,
                content=doc.document.content,
                score=score,
                variables=aggregate_references(
                    doc.references, self._ignored, self._min_occurrences
                ),
            ))

        elapsed = (time.perf_counter() - t0) * 1000
        logger.info(
            "Search returned %d of %d documents in %.1fms",
            len(results), len(documents), elapsed,
        )
        return results


def build_context(results: Iterable[SearchResult]) -> str:
    """Render search results as a context blob for a downstream model."""
    return "\n\n".join(f"{r.path}:\n{r.content}" for r in results)
