"""
Indexer: walks a source tree and writes every eligible file into the
context store.

For each file:
  1. Read the text and hash it (unchanged files are skipped unless forced)
  2. Extract identifier references via tree-sitter
  3. Embed the full text
  4. Upsert document + references in one store transaction

Extraction and embedding run in a bounded thread pool; store writes are
serialised on the calling thread.  A failure on one file is recorded and
the walk continues.
"""

from __future__ import annotations

import hashlib
import logging
import os
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from .config import Config
from .errors import (
    ContextIndexError,
    EmbeddingUnavailable,
    StoreTransactionFailure,
    StoreUnavailable,
)
from .extractor import detect_dialect, extract
from .models import FileFailure, IndexSummary, VariableReference
from .store import ContextStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


# ---------------------------------------------------------------------------
# File walker
# ---------------------------------------------------------------------------

def walk_source_files(
    root_dir: str,
    extensions: Iterable[str],
    ignore_dirs: Iterable[str],
) -> list[str]:
    """
    Return absolute paths of all indexable files under *root_dir*.

    Depth-first, using an explicit stack.  Directories named in
    *ignore_dirs* are never descended into; symlinked directories are not
    followed.  Siblings are visited in sorted order so the result is
    deterministic and each file appears exactly once.
    """
    allowed = {e.lower() for e in extensions}
    skip = set(ignore_dirs)
    results: list[str] = []
    stack = [os.path.abspath(root_dir)]

    while stack:
        current = stack.pop()
        try:
            with os.scandir(current) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as exc:
            logger.warning("Cannot read directory %s: %s", current, exc)
            continue

        subdirs: list[str] = []
        for entry in entries:
            try:
                if entry.is_dir(follow_symlinks=False):
                    if entry.name not in skip:
                        subdirs.append(entry.path)
                elif entry.is_file():
                    ext = os.path.splitext(entry.name)[1].lower()
                    if ext in allowed:
                        results.append(entry.path)
            except OSError as exc:
                logger.warning("Cannot stat %s: %s", entry.path, exc)

        # Reverse so the first sorted subdirectory is popped next.
        stack.extend(reversed(subdirs))

    return results


def compute_content_hash(content: str) -> str:
    """SHA-256 hex digest of *content* encoded as UTF-8."""
    return hashlib.sha256(content.encode("utf-8", errors="replace")).hexdigest()


def read_source(abs_path: str) -> str:
    """Read a file as UTF-8, replacing undecodable bytes."""
    with open(abs_path, encoding="utf-8", errors="replace") as fh:
        return fh.read()


# ---------------------------------------------------------------------------
# Indexer
# ---------------------------------------------------------------------------

@dataclass
class _PreparedFile:
    key: str
    content: str
    content_hash: str
    language: str
    references: list[VariableReference]
    embedding: list[float]


class Indexer:
    """
    Orchestrates full and incremental indexing into a :class:`ContextStore`.

    Parameters
    ----------
    store:
        Open context store.
    embedder:
        Any object with an ``embed(text) -> list[float]`` method.
    project_root:
        Document keys are stored relative to this directory (with ``/``
        separators).  Files outside it are keyed by absolute path.
    config:
        Supplies extensions, ignore directories and worker count.
    """

    def __init__(
        self,
        store: ContextStore,
        embedder,
        project_root: str = ".",
        config: Optional[Config] = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self.project_root = os.path.abspath(project_root)
        self._config = config or Config()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def path_key(self, path: str) -> str:
        """Return the document key for *path*."""
        abs_path = os.path.abspath(path)
        rel = os.path.relpath(abs_path, self.project_root)
        if rel == os.pardir or rel.startswith(os.pardir + os.sep):
            return abs_path.replace(os.sep, "/")
        return rel.replace(os.sep, "/")

    def _prepare(self, abs_path: str, force: bool) -> Optional[_PreparedFile]:
        """Read, extract and embed one file.  Returns None if unchanged."""
        key = self.path_key(abs_path)
        content = read_source(abs_path)
        digest = compute_content_hash(content)
        if not force and self._store.content_hash(key) == digest:
            logger.debug("File unchanged, skipping: %s", key)
            return None

        references = extract(content, key)
        embedding = self._embedder.embed(content)
        return _PreparedFile(
            key=key,
            content=content,
            content_hash=digest,
            language=detect_dialect(key) or "",
            references=references,
            embedding=embedding,
        )

    def _write(self, prepared: _PreparedFile) -> None:
        self._store.upsert(
            prepared.key,
            prepared.content,
            prepared.embedding,
            prepared.references,
            content_hash=prepared.content_hash,
            language=prepared.language,
        )
        logger.info(
            "Indexed %s (%d references)", prepared.key, len(prepared.references)
        )

    # ------------------------------------------------------------------
    # Single file
    # ------------------------------------------------------------------

    def index_file(self, path: str, force: bool = False) -> bool:
        """
        Index one file.

        Returns
        -------
        bool
            True if the file was written, False if it was unchanged.

        Raises
        ------
        EmbeddingUnavailable, StoreTransactionFailure, StoreUnavailable, OSError
        """
        prepared = self._prepare(os.path.abspath(path), force)
        if prepared is None:
            return False
        self._write(prepared)
        return True

    # ------------------------------------------------------------------
    # Tree
    # ------------------------------------------------------------------

    def run(
        self,
        root_dir: str,
        force: bool = False,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> IndexSummary:
        """
        Index every eligible file under *root_dir*.

        Parameters
        ----------
        root_dir:
            Directory to walk.
        force:
            Re-index files even when their content hash is unchanged.
        progress_callback:
            Optional callable called with (current, total, path) after each
            file is handled.

        Returns
        -------
        IndexSummary
            Tally of processed, skipped and failed files.

        Raises
        ------
        StoreUnavailable
            If the store itself becomes unusable; remaining work is cancelled.
        """
        start_time = time.time()
        files = walk_source_files(
            root_dir, self._config.CODE_EXTENSIONS, self._config.IGNORE_DIRS
        )
        total = len(files)
        summary = IndexSummary()
        logger.info("Indexing %d files under %s", total, root_dir)

        pool = ThreadPoolExecutor(
            max_workers=self._config.MAX_WORKERS, thread_name_prefix="indexer"
        )
        try:
            futures: dict[Future, str] = {
                pool.submit(self._prepare, abs_path, force): abs_path
                for abs_path in files
            }
            for done, future in enumerate(as_completed(futures), start=1):
                key = self.path_key(futures[future])
                self._handle(future, key, summary)
                if progress_callback:
                    progress_callback(done, total, key)
        except BaseException:
            pool.shutdown(wait=True, cancel_futures=True)
            raise
        else:
            pool.shutdown(wait=True)

        summary.failures.sort(key=lambda f: f.path)
        summary.elapsed_seconds = round(time.time() - start_time, 2)
        logger.info(
            "Index complete: %d processed, %d skipped, %d failed in %.1fs",
            summary.processed, summary.skipped, summary.failed,
            summary.elapsed_seconds,
        )
        return summary

    def _handle(self, future: Future, key: str, summary: IndexSummary) -> None:
        """Write one prepared file and fold its outcome into *summary*."""
        try:
            prepared = future.result()
            if prepared is None:
                summary.skipped += 1
                return
            self._write(prepared)
            summary.processed += 1
        except StoreUnavailable:
            raise
        except EmbeddingUnavailable as exc:
            self._fail(summary, key, exc, "embedding")
        except StoreTransactionFailure as exc:
            self._fail(summary, key, exc, "store")
        except OSError as exc:
            self._fail(summary, key, exc, "io")
        except ContextIndexError as exc:
            self._fail(summary, key, exc, "index")
        except Exception as exc:
            logger.exception("Unexpected error indexing %s", key)
            self._fail(summary, key, exc, "unexpected")

    @staticmethod
    def _fail(summary: IndexSummary, key: str, exc: Exception, kind: str) -> None:
        logger.warning("Failed to index %s: %s", key, exc)
        summary.failed += 1
        summary.failures.append(FileFailure(path=key, error=str(exc), kind=kind))
