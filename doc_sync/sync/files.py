"""
Source file enumeration for a workspace root.

Walks the tree, prunes build / VCS / virtualenv directories and anything
matched by the root ``.gitignore``, and keeps the files the parser supports.
"""

from __future__ import annotations

import fnmatch
import logging
import os
from typing import Callable, Iterable

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Directory / file exclusion rules
# ---------------------------------------------------------------------------

SKIP_DIRS: frozenset[str] = frozenset({
    "node_modules", "dist", "build", "__pycache__",
    ".git", "vendor", ".doc_sync",
    ".venv", "venv", "env", ".env",
    ".tox", ".mypy_cache", ".pytest_cache",
    "target",           # Java build output
    "coverage",
    ".next", ".nuxt",   # JS frameworks
    "out", ".output",
    "eggs", ".eggs",
    ".cache",
})


def load_gitignore_patterns(root: str) -> list[str]:
    """Read .gitignore from *root* and return glob patterns."""
    gi_path = os.path.join(root, ".gitignore")
    patterns: list[str] = []
    if not os.path.exists(gi_path):
        return patterns
    with open(gi_path, encoding="utf-8", errors="replace") as fh:
        for line in fh:
            line = line.strip()
            if line and not line.startswith(("#", "!")):
                patterns.append(line.rstrip("/").lstrip("/"))
    return patterns


def is_ignored(rel_path: str, patterns: list[str]) -> bool:
    """Return True if *rel_path* matches any gitignore pattern."""
    rel_path = rel_path.replace(os.sep, "/")
    name = rel_path.rsplit("/", 1)[-1]
    for pattern in patterns:
        if fnmatch.fnmatch(name, pattern) or fnmatch.fnmatch(rel_path, pattern):
            return True
    return False


def in_skipped_dir(rel_path: str, extra_skip_dirs: Iterable[str] = ()) -> bool:
    skip = SKIP_DIRS | set(extra_skip_dirs)
    parts = rel_path.replace("\\", "/").split("/")[:-1]
    return any(part in skip or part.startswith(".") for part in parts)


def walk_source_files(
    root: str,
    accept: Callable[[str], bool],
    extra_skip_dirs: Iterable[str] = (),
) -> list[str]:
    """
    Walk *root* and return root-relative, ``/``-separated paths of every
    file *accept* approves.

    Parameters
    ----------
    root:
        Workspace root directory.
    accept:
        Predicate on a relative path, normally ``parser.supports``.
    extra_skip_dirs:
        Directory names pruned in addition to :data:`SKIP_DIRS`.
    """
    skip = SKIP_DIRS | set(extra_skip_dirs)
    gi_patterns = load_gitignore_patterns(root)
    results: list[str] = []

    for dirpath, dirnames, filenames in os.walk(root, topdown=True):
        rel_dir = os.path.relpath(dirpath, root)
        rel_dir = "" if rel_dir == "." else rel_dir.replace(os.sep, "/")
        # Prune excluded directories in-place (modifies the walk)
        dirnames[:] = sorted(
            d for d in dirnames
            if d not in skip
            and not d.startswith(".")
            and not is_ignored(f"{rel_dir}/{d}" if rel_dir else d, gi_patterns)
        )

        for fname in filenames:
            rel_path = f"{rel_dir}/{fname}" if rel_dir else fname
            if not accept(rel_path) or is_ignored(rel_path, gi_patterns):
                continue
            results.append(rel_path)

    return sorted(results)
