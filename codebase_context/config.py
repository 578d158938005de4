"""
Configuration: loads settings from .codebase_context.yaml, environment
variables, and built-in defaults (in that priority order: CLI args > env >
YAML > defaults).
"""

import os

import yaml


_DEFAULTS = {
    "db_path": os.path.join(".cache", "codebase.db"),
    "ollama_base_url": "http://localhost:11434",
    "embedding_model": "all-minilm",
    "connect_timeout": 10.0,
    "request_timeout": 120.0,
    "max_workers": 4,
    "top_k": 5,
    "min_occurrences": 1,
    "log_dir": os.path.join(".cache", "logs"),
    "code_extensions": [
        ".js", ".jsx", ".mjs", ".cjs", ".ts", ".tsx",
        ".py", ".java", ".cpp", ".h", ".cs",
    ],
    "ignore_dirs": [
        "node_modules", ".git", "dist", "build", ".cache",
        "__pycache__", ".venv", "venv", "coverage", ".next",
    ],
    # Property names every JavaScript object inherits; noise in search output.
    "ignored_names": [
        "constructor", "toString", "toLocaleString", "valueOf",
        "hasOwnProperty", "isPrototypeOf", "propertyIsEnumerable",
        "__proto__", "__defineGetter__", "__defineSetter__",
        "__lookupGetter__", "__lookupSetter__",
    ],
}

# Config file search locations
_CONFIG_FILENAMES = [".codebase_context.yaml", ".codebase_context.yml"]


def _find_config_file(explicit_path: str | None = None) -> str | None:
    """Find the config file. Checks explicit path, CWD, then user home."""
    if explicit_path:
        if os.path.isfile(explicit_path):
            return explicit_path
        return None

    search_dirs = [os.getcwd(), os.path.expanduser("~")]
    for d in search_dirs:
        for name in _CONFIG_FILENAMES:
            path = os.path.join(d, name)
            if os.path.isfile(path):
                return path
    return None


def _load_yaml(path: str) -> dict:
    """Load YAML file, returns empty dict on failure."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return {}


def _split_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Config:
    """Application configuration.

    Settings are resolved in priority order:
    1. CLI arguments (handled by caller)
    2. Environment variables (``CODEBASE_CONTEXT_*``)
    3. .codebase_context.yaml config file
    4. Built-in defaults
    """

    def __init__(self, yaml_data: dict | None = None):
        yd = yaml_data or {}

        # Helper: env var > yaml > default
        def _get(env_key: str, yaml_key: str, default, cast=str):
            env_val = os.getenv(env_key)
            if env_val is not None:
                return cast(env_val)
            yaml_val = yd.get(yaml_key)
            if yaml_val is not None:
                return cast(yaml_val)
            return default

        def _get_list(env_key: str, yaml_key: str, default: list[str]) -> list[str]:
            env_val = os.getenv(env_key)
            if env_val is not None:
                return _split_list(env_val)
            yaml_val = yd.get(yaml_key)
            if isinstance(yaml_val, list):
                return [str(v) for v in yaml_val]
            if isinstance(yaml_val, str):
                return _split_list(yaml_val)
            return list(default)

        self.DB_PATH = _get("CODEBASE_CONTEXT_DB_PATH", "db_path",
                            _DEFAULTS["db_path"])
        self.OLLAMA_BASE_URL = _get("OLLAMA_BASE_URL", "ollama_base_url",
                                    _DEFAULTS["ollama_base_url"])
        self.EMBEDDING_MODEL = _get("EMBEDDING_MODEL", "embedding_model",
                                    _DEFAULTS["embedding_model"])
        self.CONNECT_TIMEOUT = _get("CODEBASE_CONTEXT_CONNECT_TIMEOUT",
                                    "connect_timeout",
                                    _DEFAULTS["connect_timeout"], cast=float)
        self.REQUEST_TIMEOUT = _get("CODEBASE_CONTEXT_REQUEST_TIMEOUT",
                                    "request_timeout",
                                    _DEFAULTS["request_timeout"], cast=float)
        self.MAX_WORKERS = _get("CODEBASE_CONTEXT_MAX_WORKERS", "max_workers",
                                _DEFAULTS["max_workers"], cast=int)
        self.TOP_K = _get("CODEBASE_CONTEXT_TOP_K", "top_k",
                          _DEFAULTS["top_k"], cast=int)
        self.MIN_OCCURRENCES = _get("CODEBASE_CONTEXT_MIN_OCCURRENCES",
                                    "min_occurrences",
                                    _DEFAULTS["min_occurrences"], cast=int)
        self.LOG_DIR = _get("CODEBASE_CONTEXT_LOG_DIR", "log_dir",
                            _DEFAULTS["log_dir"])

        self.CODE_EXTENSIONS: list[str] = [
            ext.lower() if ext.startswith(".") else f".{ext.lower()}"
            for ext in _get_list("CODEBASE_CONTEXT_EXTENSIONS",
                                 "code_extensions",
                                 _DEFAULTS["code_extensions"])
        ]
        self.IGNORE_DIRS: list[str] = _get_list("CODEBASE_CONTEXT_IGNORE_DIRS",
                                                "ignore_dirs",
                                                _DEFAULTS["ignore_dirs"])
        self.IGNORED_NAMES: list[str] = _get_list("CODEBASE_CONTEXT_IGNORED_NAMES",
                                                  "ignored_names",
                                                  _DEFAULTS["ignored_names"])

        if self.MAX_WORKERS < 1:
            self.MAX_WORKERS = 1

    @property
    def timeout(self) -> tuple[float, float]:
        """``(connect, read)`` timeout pair for ``requests``."""
        return (self.CONNECT_TIMEOUT, self.REQUEST_TIMEOUT)

    @classmethod
    def load(cls, config_path: str | None = None) -> "Config":
        """Load config from YAML file (if found) + env vars + defaults."""
        path = _find_config_file(config_path)
        yaml_data = _load_yaml(path) if path else {}
        return cls(yaml_data)
