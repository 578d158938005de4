"""
Unit tests for codebase_context.embedder.OllamaEmbedder

``requests.post`` is patched; nothing leaves the process.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests


def _response(json_data=None, status_error=None, json_error=None):
    resp = MagicMock()
    if status_error is not None:
        resp.raise_for_status.side_effect = status_error
    if json_error is not None:
        resp.json.side_effect = json_error
    else:
        resp.json.return_value = json_data
    return resp


def _embedder(**kwargs):
    from codebase_context.embedder import OllamaEmbedder
    return OllamaEmbedder("http://localhost:11434", "all-minilm", **kwargs)


class TestRequest:
    @patch("codebase_context.embedder.requests.post")
    def test_posts_deterministic_payload_with_timeout(self, mock_post):
        mock_post.return_value = _response({"embedding": [0.1, 0.2, 0.3]})
        embedder = _embedder(timeout=(3.0, 30.0))

        assert embedder.embed("const a = 1;") == pytest.approx([0.1, 0.2, 0.3])

        mock_post.assert_called_once()
        args, kwargs = mock_post.call_args
        assert args[0] == "http://localhost:11434/api/embeddings"
        assert kwargs["json"] == {
            "model": "all-minilm",
            "prompt": "const a = 1;",
            "options": {"temperature": 0},
        }
        assert kwargs["timeout"] == (3.0, 30.0)

    def test_full_endpoint_url_is_reduced_to_root(self):
        from codebase_context.embedder import OllamaEmbedder

        embedder = OllamaEmbedder("http://host:11434/api/embeddings/", "m")
        assert embedder.url == "http://host:11434/api/embeddings"

    def test_from_config(self, monkeypatch):
        from codebase_context.config import Config
        from codebase_context.embedder import OllamaEmbedder

        monkeypatch.delenv("OLLAMA_BASE_URL", raising=False)
        monkeypatch.delenv("EMBEDDING_MODEL", raising=False)
        cfg = Config({"ollama_base_url": "http://embed:9000", "embedding_model": "nomic",
                      "connect_timeout": 1, "request_timeout": 2})
        embedder = OllamaEmbedder.from_config(cfg)
        assert embedder.url == "http://embed:9000/api/embeddings"
        assert embedder.model == "nomic"
        assert embedder.timeout == (1.0, 2.0)

    @patch("codebase_context.embedder.requests.post")
    def test_safe_to_call_from_worker_threads(self, mock_post):
        from concurrent.futures import ThreadPoolExecutor

        mock_post.return_value = _response({"embedding": [1.0, 2.0]})
        embedder = _embedder()
        with ThreadPoolExecutor(max_workers=4) as pool:
            vectors = list(pool.map(embedder.embed, [f"text {i}" for i in range(8)]))

        assert vectors == [[1.0, 2.0]] * 8
        assert mock_post.call_count == 8


class TestFailures:
    @pytest.mark.parametrize("exc", [
        requests.exceptions.ConnectionError("refused"),
        requests.exceptions.Timeout("slow"),
    ])
    def test_transport_errors(self, exc):
        from codebase_context.errors import EmbeddingUnavailable

        with patch("codebase_context.embedder.requests.post", side_effect=exc) as mock_post:
            with pytest.raises(EmbeddingUnavailable):
                _embedder().embed("text")
        assert mock_post.call_count == 1  # no retries

    @patch("codebase_context.embedder.requests.post")
    def test_non_success_status(self, mock_post):
        from codebase_context.errors import EmbeddingUnavailable

        mock_post.return_value = _response(
            status_error=requests.exceptions.HTTPError("500 Server Error")
        )
        with pytest.raises(EmbeddingUnavailable):
            _embedder().embed("text")

    @patch("codebase_context.embedder.requests.post")
    def test_non_json_body(self, mock_post):
        from codebase_context.errors import EmbeddingUnavailable

        mock_post.return_value = _response(json_error=ValueError("not json"))
        with pytest.raises(EmbeddingUnavailable):
            _embedder().embed("text")

    @pytest.mark.parametrize("body", [
        {},
        {"embedding": []},
        {"embedding": None},
        {"embedding": [0.0, 0.0, 0.0]},
        {"embedding": ["a", "b"]},
        {"embedding": [1.0, float("nan")]},
        ["not", "a", "dict"],
    ])
    def test_degenerate_vectors(self, body):
        from codebase_context.errors import EmbeddingUnavailable

        with patch("codebase_context.embedder.requests.post",
                   return_value=_response(body)):
            with pytest.raises(EmbeddingUnavailable):
                _embedder().embed("text")
