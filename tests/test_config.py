"""
Unit tests for doc_sync.config
"""

from __future__ import annotations

import os

import pytest

from doc_sync.config import Config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("DOC_SYNC_") or key.startswith("OLLAMA_") or key.startswith("LLM_"):
            monkeypatch.delenv(key, raising=False)


class TestConfig:

    def test_defaults(self):
        cfg = Config()
        assert cfg.STATE_DIR == ".doc_sync"
        assert cfg.PERSONA == "developer"
        assert cfg.MAX_WORKERS == 4
        assert cfg.MIN_RELEVANCE == 0.5
        assert cfg.PREFER_GENERATED is False
        assert cfg.EXTERNAL_SOURCES == []

    def test_yaml_overrides_defaults(self):
        cfg = Config({"persona": "architect", "search_top_k": 3, "extra_skip_dirs": ["gen"]})
        assert cfg.PERSONA == "architect"
        assert cfg.SEARCH_TOP_K == 3
        assert cfg.EXTRA_SKIP_DIRS == ["gen"]

    def test_env_overrides_yaml(self, monkeypatch):
        monkeypatch.setenv("DOC_SYNC_PERSONA", "product-manager")
        monkeypatch.setenv("DOC_SYNC_MAX_WORKERS", "0")
        monkeypatch.setenv("DOC_SYNC_PREFER_GENERATED", "true")
        monkeypatch.setenv("DOC_SYNC_EXTRA_SKIP_DIRS", "gen, fixtures")
        cfg = Config({"persona": "architect", "max_workers": 8})
        assert cfg.PERSONA == "product-manager"
        assert cfg.MAX_WORKERS == 1
        assert cfg.PREFER_GENERATED is True
        assert cfg.EXTRA_SKIP_DIRS == ["gen", "fixtures"]

    def test_external_sources(self):
        cfg = Config({
            "external_timeout": 2,
            "external_sources": [
                {"name": "team-b", "url": "http://b/search"},
                {"url": "http://c/search", "timeout": 9},
                {"name": "broken"},
                "nonsense",
            ],
        })
        assert cfg.EXTERNAL_SOURCES == [
            {"name": "team-b", "url": "http://b/search", "timeout": 2.0},
            {"name": "http://c/search", "url": "http://c/search", "timeout": 9.0},
        ]

    def test_relative_state_dir_inside_root(self, tmp_path):
        assert Config().state_path(str(tmp_path)) == os.path.join(str(tmp_path), ".doc_sync")

    def test_absolute_state_dir_keyed_per_root(self, tmp_path):
        cfg = Config({"state_dir": str(tmp_path / "state")})
        a = cfg.state_path(str(tmp_path / "one" / "app"))
        b = cfg.state_path(str(tmp_path / "two" / "app"))
        assert a != b
        assert os.path.dirname(a) == str(tmp_path / "state")
        assert os.path.basename(a).startswith("app-")


class TestLoad:

    def test_reads_yaml_from_root(self, tmp_path):
        (tmp_path / ".doc_sync.yaml").write_text("persona: business-analyst\n", encoding="utf-8")
        assert Config.load(root=str(tmp_path)).PERSONA == "business-analyst"

    def test_explicit_path(self, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text("search_top_k: 7\n", encoding="utf-8")
        assert Config.load(str(path)).SEARCH_TOP_K == 7

    def test_missing_explicit_path_uses_defaults(self, tmp_path):
        assert Config.load(str(tmp_path / "absent.yaml")).SEARCH_TOP_K == 10

    def test_invalid_yaml_ignored(self, tmp_path):
        (tmp_path / ".doc_sync.yaml").write_text("persona: [unclosed\n", encoding="utf-8")
        assert Config.load(root=str(tmp_path)).PERSONA == "developer"
