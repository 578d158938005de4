"""
`codebase-context` command line interface.

Commands
--------
codebase-context index [ROOT]             -- index (incrementally) a source tree
codebase-context index [ROOT] --force     -- re-embed every file
codebase-context search "<query>"         -- rank stored files against a query
codebase-context search "<query>" --top-k 3 --json
codebase-context context "<query>"        -- print the context blob for a query
codebase-context refs <name>              -- where is an identifier declared/used
codebase-context remove <path>            -- drop a file from the store
codebase-context status                   -- store summary
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import datetime
from typing import Optional

from tqdm import tqdm

from .config import Config
from .errors import ContextIndexError, EmbeddingUnavailable, StoreUnavailable
from .models import RefType
from . import session as ctx

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def setup_logger(log_dir: str) -> logging.Logger:
    """Attach a file handler to the package logger. All verbose output goes here."""
    os.makedirs(log_dir, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = os.path.join(log_dir, f"codebase_context_{timestamp}.log")

    pkg_logger = logging.getLogger("codebase_context")
    pkg_logger.setLevel(logging.DEBUG)

    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S"
    ))
    pkg_logger.addHandler(fh)
    return pkg_logger


def _print_summary(summary) -> None:
    print(
        f"\nIndex complete:\n"
        f"  Processed: {summary.processed}\n"
        f"  Skipped:   {summary.skipped}\n"
        f"  Failed:    {summary.failed}\n"
        f"  Time:      {summary.elapsed_seconds:.1f}s"
    )
    for failure in summary.failures:
        print(f"    ! {failure.path}  [{failure.kind}] {failure.error}")


# ---------------------------------------------------------------------------
# Sub-command handlers
# ---------------------------------------------------------------------------

def _cmd_index(args: argparse.Namespace) -> int:
    """Index a source tree into the store."""
    root = os.path.abspath(args.root)
    print(f"Indexing: {root}")

    with ctx.open_session(args.db, config=Config.load(args.config)) as session:
        pbar = tqdm(total=None, unit="file", desc="Indexing", disable=args.quiet)

        def _progress(current: int, total: int, path: str) -> None:
            if pbar.total != total:
                pbar.total = total
                pbar.refresh()
            pbar.set_postfix_str(os.path.basename(path), refresh=False)
            pbar.update(1)

        try:
            summary = ctx.index_tree(session, root, force=args.force, progress=_progress)
        finally:
            pbar.close()

    if args.json:
        print(json.dumps(summary.as_dict(), indent=2))
    else:
        _print_summary(summary)
    return 1 if summary.failed else 0


def _cmd_search(args: argparse.Namespace) -> int:
    """Rank stored files against a query."""
    with ctx.open_session(args.db, config=Config.load(args.config)) as session:
        results = ctx.search(session, args.query, args.top_k)

    if args.json:
        print(json.dumps(
            [
                {"path": r.path, "score": r.score, "variables": r.variables}
                for r in results
            ],
            indent=2,
        ))
        return 0

    if not results:
        print(f"No results found for: {args.query!r}")
        return 0

    print(f"\nSearch results for: {args.query!r}  [{len(results)} result(s)]")
    print("-" * 70)
    for i, r in enumerate(results, 1):
        print(f"\n  [{i}] {r.path}")
        print(f"       Score    : {r.score:.4f}")
        if r.variables:
            names = ", ".join(list(r.variables)[:10])
            more = len(r.variables) - 10
            print(f"       Variables: {names}" + (f" (+{more} more)" if more > 0 else ""))
    print()
    return 0


def _cmd_context(args: argparse.Namespace) -> int:
    """Print the context blob for a query."""
    with ctx.open_session(args.db, config=Config.load(args.config)) as session:
        print(ctx.context_for(session, args.query, args.top_k))
    return 0


def _cmd_refs(args: argparse.Namespace) -> int:
    """List every stored reference to an identifier."""
    ref_type = RefType(args.type) if args.type else None
    with ctx.open_session(args.db, config=Config.load(args.config)) as session:
        refs = session.store.find_references(args.name, ref_type)

    if not refs:
        print(f"  (no references to: {args.name})")
        return 0
    print(f"\nReferences to '{args.name}'  [{len(refs)} result(s)]")
    print("-" * 60)
    for ref in refs:
        source = f"  from {ref.source_path}" if ref.source_path else ""
        print(f"  {ref.ref_type.value:<12} {ref.file_path}:{ref.line_number}{source}")
    return 0


def _cmd_remove(args: argparse.Namespace) -> int:
    """Drop a file from the store."""
    with ctx.open_session(args.db, config=Config.load(args.config)) as session:
        removed = ctx.remove_file(session, args.path)
    print(f"Removed {args.path}" if removed else f"Not indexed: {args.path}")
    return 0 if removed else 1


def _cmd_status(args: argparse.Namespace) -> int:
    """Print a store summary."""
    with ctx.open_session(args.db, config=Config.load(args.config)) as session:
        stats = session.store.stats()
    print("\nContext Store Status")
    print("=" * 40)
    print(f"  {'db_path':<20} {stats['db_path']}")
    print(f"  {'documents':<20} {stats['documents']}")
    print(f"  {'references':<20} {stats['references']}")
    print(f"  {'dimensions':<20} {stats['dimensions'] or '-'}")
    for ref_type, n in sorted(stats["by_ref_type"].items()):
        print(f"    {ref_type:<18} {n}")
    print()
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    """Build and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="codebase-context",
        description="Codebase context index: embeddings and identifier references",
    )
    parser.add_argument("--db", default=None, help="Store path (default: from config)")
    parser.add_argument("--config", default=None, help="Path to a YAML config file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument(
        "--log-file", action="store_true",
        help="Also write debug logs to the configured log directory",
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    # --- index ---
    index_p = subparsers.add_parser("index", help="Index a source tree")
    index_p.add_argument("root", nargs="?", default=".", help="Directory to index")
    index_p.add_argument(
        "--force", action="store_true",
        help="Re-index files even if their content is unchanged",
    )
    index_p.add_argument("--json", action="store_true", help="Machine-readable summary")
    index_p.add_argument("-q", "--quiet", action="store_true", help="No progress bar")
    index_p.set_defaults(func=_cmd_index)

    # --- search ---
    search_p = subparsers.add_parser("search", help="Rank files against a query")
    search_p.add_argument("query", help="Natural-language query or diff text")
    search_p.add_argument(
        "--top-k", dest="top_k", type=int, default=None,
        help="Number of results to return (default: from config)",
    )
    search_p.add_argument("--json", action="store_true", help="Machine-readable output")
    search_p.set_defaults(func=_cmd_search)

    # --- context ---
    context_p = subparsers.add_parser("context", help="Print a context blob for a query")
    context_p.add_argument("query", help="Natural-language query or diff text")
    context_p.add_argument("--top-k", dest="top_k", type=int, default=None)
    context_p.set_defaults(func=_cmd_context)

    # --- refs ---
    refs_p = subparsers.add_parser("refs", help="List references to an identifier")
    refs_p.add_argument("name", help="Identifier name")
    refs_p.add_argument(
        "--type", choices=[t.value for t in RefType], default=None,
        help="Only references of this kind",
    )
    refs_p.set_defaults(func=_cmd_refs)

    # --- remove ---
    remove_p = subparsers.add_parser("remove", help="Remove a file from the store")
    remove_p.add_argument("path", help="File path as indexed")
    remove_p.set_defaults(func=_cmd_remove)

    # --- status ---
    status_p = subparsers.add_parser("status", help="Show store summary")
    status_p.set_defaults(func=_cmd_status)

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the `codebase-context` command.

    Parameters
    ----------
    argv:
        Argument list without the program name.  Defaults to sys.argv.

    Returns
    -------
    int
        Process exit code.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    # Configure logging if not already configured
    if not logging.root.handlers:
        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.WARNING,
            format="%(levelname)s  %(name)s  %(message)s",
        )
    if args.log_file:
        setup_logger(Config.load(args.config).LOG_DIR)

    try:
        return args.func(args)
    except StoreUnavailable as exc:
        print(f"Store unavailable: {exc}", file=sys.stderr)
        return 1
    except EmbeddingUnavailable as exc:
        print(f"Embedding provider unavailable: {exc}", file=sys.stderr)
        return 1
    except ContextIndexError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
