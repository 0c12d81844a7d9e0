"""
Configuration: loads settings from .doc_sync.yaml, environment variables,
and built-in defaults (in that priority order: CLI args > env > YAML > defaults).
"""

from __future__ import annotations

import hashlib
import logging
import os

import yaml

logger = logging.getLogger(__name__)


_DEFAULTS = {
    "state_dir": ".doc_sync",
    "max_workers": 4,
    "persona": "developer",
    "search_top_k": 10,
    "min_relevance": 0.5,
    "medium_confidence": 3.0,
    "high_confidence": 30.0,
    "external_timeout": 5.0,
    "debounce_seconds": 0.5,
    "extra_skip_dirs": [],
    "ollama_base_url": "http://localhost:11434",
    "ollama_model": "llama3",
    "llm_max_retries": 3,
    "llm_retry_delay": 2.0,
    "prefer_generated": False,
    "external_sources": [],
    "log_level": "WARNING",
}

# Config file search locations
_CONFIG_FILENAMES = [".doc_sync.yaml", ".doc_sync.yml"]


def _find_config_file(
    explicit_path: str | None = None,
    root: str | None = None,
) -> str | None:
    """Find the config file. Checks explicit path, workspace root, then user home."""
    if explicit_path:
        if os.path.isfile(explicit_path):
            return explicit_path
        return None

    search_dirs = [root or os.getcwd(), os.path.expanduser("~")]
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
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Ignoring unreadable config file %s: %s", path, exc)
        return {}


def _as_list(value) -> list:
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return []


class Config:
    """Engine configuration.

    Settings are resolved in priority order:
    1. CLI arguments (handled by caller)
    2. Environment variables (``DOC_SYNC_*``)
    3. .doc_sync.yaml config file
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

        def _get_bool(env_key: str, yaml_key: str, default: bool) -> bool:
            env_val = os.getenv(env_key)
            if env_val is not None:
                return env_val.lower() == "true"
            yaml_val = yd.get(yaml_key)
            if yaml_val is not None:
                return bool(yaml_val)
            return default

        self.STATE_DIR = _get("DOC_SYNC_STATE_DIR", "state_dir",
                              _DEFAULTS["state_dir"])
        self.MAX_WORKERS = max(1, _get("DOC_SYNC_MAX_WORKERS", "max_workers",
                                       _DEFAULTS["max_workers"], cast=int))
        self.PERSONA = _get("DOC_SYNC_PERSONA", "persona", _DEFAULTS["persona"])
        self.SEARCH_TOP_K = _get("DOC_SYNC_SEARCH_TOP_K", "search_top_k",
                                 _DEFAULTS["search_top_k"], cast=int)

        # Answer confidence thresholds (raw search scores)
        self.MIN_RELEVANCE = _get("DOC_SYNC_MIN_RELEVANCE", "min_relevance",
                                  _DEFAULTS["min_relevance"], cast=float)
        self.MEDIUM_CONFIDENCE = _get("DOC_SYNC_MEDIUM_CONFIDENCE",
                                      "medium_confidence",
                                      _DEFAULTS["medium_confidence"], cast=float)
        self.HIGH_CONFIDENCE = _get("DOC_SYNC_HIGH_CONFIDENCE", "high_confidence",
                                    _DEFAULTS["high_confidence"], cast=float)

        self.EXTERNAL_TIMEOUT = _get("DOC_SYNC_EXTERNAL_TIMEOUT",
                                     "external_timeout",
                                     _DEFAULTS["external_timeout"], cast=float)
        self.DEBOUNCE_SECONDS = _get("DOC_SYNC_DEBOUNCE_SECONDS",
                                     "debounce_seconds",
                                     _DEFAULTS["debounce_seconds"], cast=float)

        env_skip = os.getenv("DOC_SYNC_EXTRA_SKIP_DIRS")
        self.EXTRA_SKIP_DIRS: list[str] = _as_list(
            env_skip if env_skip is not None
            else yd.get("extra_skip_dirs", _DEFAULTS["extra_skip_dirs"])
        )

        # Text generation (Ollama)
        self.OLLAMA_BASE_URL = _get("OLLAMA_BASE_URL", "ollama_base_url",
                                    _DEFAULTS["ollama_base_url"])
        self.OLLAMA_MODEL = _get("OLLAMA_MODEL", "ollama_model",
                                 _DEFAULTS["ollama_model"])
        self.LLM_MAX_RETRIES = _get("LLM_MAX_RETRIES", "llm_max_retries",
                                    _DEFAULTS["llm_max_retries"], cast=int)
        self.LLM_RETRY_DELAY = _get("LLM_RETRY_DELAY", "llm_retry_delay",
                                    _DEFAULTS["llm_retry_delay"], cast=float)
        self.PREFER_GENERATED = _get_bool("DOC_SYNC_PREFER_GENERATED",
                                          "prefer_generated",
                                          _DEFAULTS["prefer_generated"])

        # External retrieval sources
        self.EXTERNAL_SOURCES: list[dict] = []
        for entry in yd.get("external_sources", _DEFAULTS["external_sources"]) or []:
            if not isinstance(entry, dict) or not entry.get("url"):
                logger.warning("Ignoring malformed external source entry: %r", entry)
                continue
            self.EXTERNAL_SOURCES.append({
                "name": str(entry.get("name") or entry["url"]),
                "url": str(entry["url"]),
                "timeout": float(entry.get("timeout", self.EXTERNAL_TIMEOUT)),
            })

        self.LOG_LEVEL = _get("DOC_SYNC_LOG_LEVEL", "log_level",
                              _DEFAULTS["log_level"])

    def state_path(self, root: str) -> str:
        """
        Return the absolute state directory for workspace *root*.

        A relative ``state_dir`` lives inside the root.  An absolute one is
        shared, so each root gets its own sub-directory keyed by a digest of
        the root path.
        """
        root = os.path.abspath(root)
        if os.path.isabs(self.STATE_DIR):
            digest = hashlib.sha256(root.encode("utf-8")).hexdigest()[:16]
            return os.path.join(self.STATE_DIR, f"{os.path.basename(root)}-{digest}")
        return os.path.join(root, self.STATE_DIR)

    @classmethod
    def load(cls, config_path: str | None = None, root: str | None = None) -> "Config":
        """Load config from YAML file (if found) + env vars + defaults."""
        path = _find_config_file(config_path, root)
        yaml_data = _load_yaml(path) if path else {}
        if path:
            logger.debug("Loaded config from %s", path)
        return cls(yaml_data)
