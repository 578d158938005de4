"""
Public entry points for collaborators (git hooks, review generators, CLIs).

Callers open a :class:`ContextSession`, pass it to every operation, and
close it when done::

    from codebase_context import open_session, index_tree, search

    with open_session(".cache/codebase.db") as session:
        index_tree(session, "src")
        results = search(session, "where is the cart total computed", k=3)

The package keeps no module-level state between calls; everything lives
on the session object.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from .config import Config
from .embedder import OllamaEmbedder
from .indexer import Indexer, ProgressCallback
from .models import IndexSummary, SearchResult
from .retriever import Retriever, build_context
from .store import ContextStore

logger = logging.getLogger(__name__)


@dataclass
class ContextSession:
    """Handle returned by :func:`initialize`; owns the open store."""
    store: ContextStore
    embedder: object
    config: Config
    indexer: Indexer
    retriever: Retriever

    @property
    def closed(self) -> bool:
        return self.store.closed


def initialize(
    store_location: Optional[str] = None,
    config: Optional[Config] = None,
    embedder=None,
    project_root: str = ".",
) -> ContextSession:
    """
    Open (creating if absent) the store and return a session.

    Parameters
    ----------
    store_location:
        SQLite database path; defaults to ``config.DB_PATH``.
    config:
        Settings; defaults to :meth:`Config.load`.
    embedder:
        Object with ``embed(text) -> list[float]``; defaults to an
        :class:`OllamaEmbedder` built from *config*.
    project_root:
        Base directory for document keys.

    Raises
    ------
    StoreUnavailable
        If the store cannot be opened.
    """
    config = config or Config.load()
    location = store_location or config.DB_PATH
    store = ContextStore(location)
    embedder = embedder or OllamaEmbedder.from_config(config)
    logger.info("Opened context store %s", location)
    return ContextSession(
        store=store,
        embedder=embedder,
        config=config,
        indexer=Indexer(store, embedder, project_root=project_root, config=config),
        retriever=Retriever.from_config(store, embedder, config),
    )


def index_file(session: ContextSession, path: str, force: bool = False) -> bool:
    """Index a single file; returns False if it was unchanged and skipped."""
    return session.indexer.index_file(path, force=force)


def index_tree(
    session: ContextSession,
    root_dir: str,
    force: bool = False,
    progress: Optional[ProgressCallback] = None,
) -> IndexSummary:
    """Index every eligible file under *root_dir* and return the tally."""
    return session.indexer.run(root_dir, force=force, progress_callback=progress)


def search(
    session: ContextSession,
    query: str,
    k: Optional[int] = None,
) -> list[SearchResult]:
    """Return the top-*k* documents for *query* (``config.TOP_K`` by default)."""
    return session.retriever.search(query, k if k is not None else session.config.TOP_K)


def remove_file(session: ContextSession, path: str) -> bool:
    """Delete a file's document and references; returns True if it existed."""
    return session.store.delete(session.indexer.path_key(path))


def context_for(
    session: ContextSession,
    query: str,
    k: Optional[int] = None,
) -> str:
    """Search and render the hits as a single context blob."""
    return build_context(search(session, query, k))


def close(session: ContextSession) -> None:
    """Release the store, and the embedder if it has a ``close()``.  Idempotent."""
    if session.closed:
        return
    try:
        closer = getattr(session.embedder, "close", None)
        if callable(closer):
            closer()
    finally:
        session.store.close()
        logger.debug("Closed context store %s", session.store.db_path)


@contextmanager
def open_session(
    store_location: Optional[str] = None,
    config: Optional[Config] = None,
    embedder=None,
    project_root: str = ".",
) -> Iterator[ContextSession]:
    """Context manager around :func:`initialize` that always calls :func:`close`."""
    session = initialize(store_location, config, embedder, project_root)
    try:
        yield session
    finally:
        close(session)
