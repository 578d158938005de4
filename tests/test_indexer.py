"""
Tests for codebase_context.indexer

Builds small source trees under tmp_path and indexes them with the
offline embedder from conftest.
"""

from __future__ import annotations

import os

import pytest


def _write(root, rel, text):
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture()
def tree(tmp_path):
    root = tmp_path / "project"
    _write(root, "src/cart.js", "export function total(items) { return items.length; }\n")
    _write(root, "src/checkout.js", 'import { total } from "./cart";\ntotal([]);\n')
    _write(root, "src/types.ts", "export type Id = string;\n")
    _write(root, "README.md", "# docs\n")
    _write(root, "node_modules/dep/index.js", "module.exports = 1;\n")
    _write(root, ".git/hooks/pre-commit.js", "// hook\n")
    return root


def _indexer(store, embedder, root, config):
    from codebase_context.indexer import Indexer
    return Indexer(store, embedder, project_root=str(root), config=config)


# ---------------------------------------------------------------------------
# File walker
# ---------------------------------------------------------------------------

class TestWalkSourceFiles:
    def test_skips_ignored_dirs_and_other_extensions(self, tree):
        from codebase_context.indexer import walk_source_files

        files = walk_source_files(str(tree), [".js", ".ts"], ["node_modules", ".git"])
        rel = [os.path.relpath(f, tree).replace(os.sep, "/") for f in files]
        assert rel == ["src/cart.js", "src/checkout.js", "src/types.ts"]
        assert all(os.path.isabs(f) for f in files)

    def test_each_file_once_in_sorted_order(self, tmp_path):
        from codebase_context.indexer import walk_source_files

        for rel in ("b/z.js", "b/a.js", "a.js", "c/d/e.js"):
            _write(tmp_path, rel, "x;\n")
        files = walk_source_files(str(tmp_path), [".JS"], [])
        rel = [os.path.relpath(f, tmp_path).replace(os.sep, "/") for f in files]
        assert rel == ["a.js", "b/a.js", "b/z.js", "c/d/e.js"]
        assert len(set(files)) == len(files)

    def test_missing_root_yields_nothing(self, tmp_path):
        from codebase_context.indexer import walk_source_files
        assert walk_source_files(str(tmp_path / "absent"), [".js"], []) == []


def test_content_hash_is_stable():
    from codebase_context.indexer import compute_content_hash

    assert compute_content_hash("abc") == compute_content_hash("abc")
    assert compute_content_hash("abc") != compute_content_hash("abd")
    assert len(compute_content_hash("")) == 64


# ---------------------------------------------------------------------------
# Indexer.run
# ---------------------------------------------------------------------------

class TestRun:
    def test_indexes_eligible_files(self, store, fake_embedder, tree, config):
        from codebase_context.models import RefType

        summary = _indexer(store, fake_embedder, tree, config).run(str(tree))

        assert summary.processed == 3
        assert summary.failed == 0
        assert summary.skipped == 0
        assert summary.total == 3
        assert [d.path for d in store.all()] == [
            "src/cart.js", "src/checkout.js", "src/types.ts",
        ]

        doc = store.get("src/checkout.js")
        assert doc.document.language == "javascript"
        assert doc.document.content_hash
        imports = [r for r in doc.references if r.ref_type is RefType.IMPORT]
        assert [(r.variable_name, r.source_path) for r in imports] == [("total", "./cart")]

    def test_progress_callback(self, store, fake_embedder, tree, config):
        calls = []
        _indexer(store, fake_embedder, tree, config).run(
            str(tree), progress_callback=lambda cur, total, path: calls.append((cur, total, path))
        )
        assert [c[0] for c in calls] == [1, 2, 3]
        assert {c[1] for c in calls} == {3}
        assert {c[2] for c in calls} == {"src/cart.js", "src/checkout.js", "src/types.ts"}

    def test_non_code_files_are_embedded_without_references(
        self, store, fake_embedder, tmp_path, config
    ):
        _write(tmp_path, "tool.py", "def helper():\n    return 1\n")
        summary = _indexer(store, fake_embedder, tmp_path, config).run(str(tmp_path))

        assert summary.processed == 1
        doc = store.get("tool.py")
        assert doc.references == []
        assert doc.document.language == ""

    def test_embedding_failure_isolated_to_one_file(self, store, make_embedder, tree, config):
        _write(tree, "src/huge.js", "// EMBED_FAIL\nconst big = 1;\n")
        embedder = make_embedder(fail_on=("EMBED_FAIL",))

        summary = _indexer(store, embedder, tree, config).run(str(tree))

        assert summary.processed == 3
        assert summary.failed == 1
        assert summary.failures[0].path == "src/huge.js"
        assert summary.failures[0].kind == "embedding"
        assert store.get("src/huge.js") is None
        assert store.count() == 3

    def test_store_failure_isolated_to_one_file(self, store, make_fixed_embedder, tmp_path, config):
        _write(tmp_path, "a.js", "const a = 1;\n")
        _write(tmp_path, "b.js", "const b = 2;\n")
        store.upsert("seed.js", "seed", [1.0, 0.0, 0.0], [])
        embedder = make_fixed_embedder(
            {"const b = 2;\n": [1.0, 0.0]},  # wrong dimensionality
            [0.0, 1.0, 0.0],
        )

        summary = _indexer(store, embedder, tmp_path, config).run(str(tmp_path))

        assert summary.processed == 1
        assert summary.failed == 1
        assert summary.failures[0].path == "b.js"
        assert summary.failures[0].kind == "store"
        assert store.get("a.js") is not None
        assert store.get("b.js") is None

    def test_store_unavailable_aborts_run(self, store, fake_embedder, tree, config, monkeypatch):
        from codebase_context.errors import StoreUnavailable

        def _broken(*args, **kwargs):
            raise StoreUnavailable("disk gone")

        monkeypatch.setattr(store, "upsert", _broken)
        with pytest.raises(StoreUnavailable):
            _indexer(store, fake_embedder, tree, config).run(str(tree))

    def test_unchanged_files_are_skipped(self, store, fake_embedder, tree, config):
        indexer = _indexer(store, fake_embedder, tree, config)
        indexer.run(str(tree))
        calls_after_first = len(fake_embedder.calls)

        summary = indexer.run(str(tree))

        assert summary.skipped == 3
        assert summary.processed == 0
        assert len(fake_embedder.calls) == calls_after_first

    def test_changed_file_is_reindexed(self, store, fake_embedder, tree, config):
        indexer = _indexer(store, fake_embedder, tree, config)
        indexer.run(str(tree))
        _write(tree, "src/cart.js", "export const discount = 0.1;\n")

        summary = indexer.run(str(tree))

        assert summary.processed == 1
        assert summary.skipped == 2
        names = {r.variable_name for r in store.get("src/cart.js").references}
        assert names == {"discount"}

    def test_force_reindexes_everything(self, store, fake_embedder, tree, config):
        indexer = _indexer(store, fake_embedder, tree, config)
        indexer.run(str(tree))
        summary = indexer.run(str(tree), force=True)

        assert summary.processed == 3
        assert summary.skipped == 0
        assert store.count() == 3

    def test_reindex_keeps_reference_set(self, store, fake_embedder, tree, config):
        indexer = _indexer(store, fake_embedder, tree, config)
        indexer.run(str(tree))
        before = store.get("src/checkout.js").references
        indexer.run(str(tree), force=True)
        assert store.get("src/checkout.js").references == before


# ---------------------------------------------------------------------------
# Indexer.index_file / path_key
# ---------------------------------------------------------------------------

class TestIndexFile:
    def test_index_single_file(self, store, fake_embedder, tree, config):
        indexer = _indexer(store, fake_embedder, tree, config)

        assert indexer.index_file(str(tree / "src" / "cart.js")) is True
        assert indexer.index_file(str(tree / "src" / "cart.js")) is False
        assert indexer.index_file(str(tree / "src" / "cart.js"), force=True) is True
        assert store.count() == 1

    def test_embedding_failure_raises(self, store, make_embedder, tmp_path, config):
        from codebase_context.errors import EmbeddingUnavailable

        path = _write(tmp_path, "x.js", "// EMBED_FAIL\n")
        indexer = _indexer(store, make_embedder(fail_on=("EMBED_FAIL",)), tmp_path, config)
        with pytest.raises(EmbeddingUnavailable):
            indexer.index_file(str(path))
        assert store.count() == 0

    def test_missing_file_raises_oserror(self, store, fake_embedder, tmp_path, config):
        indexer = _indexer(store, fake_embedder, tmp_path, config)
        with pytest.raises(OSError):
            indexer.index_file(str(tmp_path / "absent.js"))

    def test_path_key(self, store, fake_embedder, tmp_path, config):
        indexer = _indexer(store, fake_embedder, tmp_path / "proj", config)

        assert indexer.path_key(str(tmp_path / "proj" / "src" / "a.js")) == "src/a.js"
        outside = indexer.path_key(str(tmp_path / "other" / "b.js"))
        assert outside.endswith("other/b.js")
        assert not outside.startswith("..")
