"""
Markdown export of the documentation.

Produces one ``README.md`` overview plus one page per documented node::

    <out_dir>/
        README.md
        class_src_user_ts_UserService.md
        ...

Pages are named after the node id so two nodes with the same label never
collide.  A manifest lists the pages of the last export; pages it names
whose node is gone are deleted, other files in the directory are left
alone.
"""

from __future__ import annotations

import logging
import os
import re
from datetime import datetime
from typing import Iterable, Optional

from ..errors import PersistenceError
from .generator import DocumentedNode

logger = logging.getLogger(__name__)

OVERVIEW_FILE = "README.md"
MANIFEST_FILE = ".pages"
MAX_TABLE_ROWS = 50

_UNSAFE = re.compile(r"[^A-Za-z0-9]+")


def page_name(doc: DocumentedNode) -> str:
    """File name of the page for *doc*."""
    return _UNSAFE.sub("_", doc.id).strip("_") + ".md"


def _cell(text) -> str:
    return str(text).replace("|", "\\|").replace("\n", " ")


def _timestamp(ts: Optional[float]) -> str:
    if ts is None:
        return "never"
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def render_overview(
    project_name: str,
    architecture: dict,
    docs: list[DocumentedNode],
    generated_at: Optional[float] = None,
) -> str:
    """
    Render the project overview page.

    Parameters
    ----------
    project_name:
        Title used in the heading, usually the root directory name.
    architecture:
        Result of :meth:`Workspace.architecture`.
    docs:
        Documented nodes in graph order; the first ``MAX_TABLE_ROWS`` are
        listed in the node table.
    generated_at:
        Sync time (epoch seconds) shown under the heading.
    """
    lines = [
        f"# {project_name}: Codebase Documentation",
        "",
        f"> Synced: {_timestamp(generated_at)}",
        "",
        "## Statistics",
        "",
        f"- **Files**: {architecture.get('fileCount', 0)}",
        f"- **Nodes**: {architecture.get('nodeCount', 0)}",
        f"- **Edges**: {architecture.get('edgeCount', 0)}",
    ]
    languages = architecture.get("languages") or {}
    lines.append(f"- **Languages**: {', '.join(languages) if languages else 'none detected'}")

    by_type = architecture.get("byNodeType") or {}
    if by_type:
        lines += ["", "## Node Types", ""]
        lines += [f"- {t}: {n}" for t, n in sorted(by_type.items())]

    entry_points = architecture.get("entryPoints") or []
    lines += ["", "## Entry Points", ""]
    if entry_points:
        lines += [f"- `{e['label']}` ({e['type']}, {e['filePath']})" for e in entry_points]
    else:
        lines.append("None detected.")

    patterns = architecture.get("patterns") or {}
    if patterns:
        lines += ["", "## Patterns Used", ""]
        lines += [f"- {tag} ({count})" for tag, count in patterns.items()]

    lines += [
        "",
        "## Components",
        "",
        "| Name | Type | File | Dependencies |",
        "|------|------|------|--------------|",
    ]
    for doc in docs[:MAX_TABLE_ROWS]:
        lines.append(
            f"| [{_cell(doc.label)}]({page_name(doc)}) | {doc.type} "
            f"| {_cell(doc.file_path)} | {len(doc.dependencies)} |"
        )
    if len(docs) > MAX_TABLE_ROWS:
        lines.append(f"| *({len(docs) - MAX_TABLE_ROWS} more)* | | | |")
    lines.append("")
    return "\n".join(lines)


def render_node(doc: DocumentedNode) -> str:
    """Render the page for one documented node."""
    lines = [
        f"# {doc.label}",
        "",
        f"> **Type**: {doc.type} | **File**: `{doc.file_path}:{doc.start_line}` "
        f"| **Persona**: {doc.persona} | **Source**: {doc.strategy}",
        "",
        "## Summary",
        "",
        doc.summary or "No summary available.",
    ]
    if doc.description:
        lines += ["", "## Description", "", doc.description]
    if doc.signature:
        lines += ["", "## Signature", "", "```", doc.signature, "```"]

    for title, names in (("Dependencies", doc.dependencies), ("Used By", doc.dependents)):
        if names:
            lines += ["", f"## {title}", ""]
            lines += [f"- `{name}`" for name in names]

    if doc.patterns:
        lines += ["", "## Patterns", "", ", ".join(doc.patterns)]
    if doc.usage_examples:
        lines += ["", "## Usage", "", "```"] + list(doc.usage_examples) + ["```"]
    lines.append("")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------

def _write(path: str, text: str) -> None:
    with open(path, "w", encoding="utf-8") as fh:
        fh.write(text)


def write_markdown(
    out_dir: str,
    project_name: str,
    architecture: dict,
    docs: Iterable[DocumentedNode],
    generated_at: Optional[float] = None,
) -> list[str]:
    """
    Write the overview and every node page under *out_dir*.

    Returns the written paths, overview first.

    Raises
    ------
    PersistenceError
        If the directory or a page cannot be written.
    """
    docs = list(docs)
    written: list[str] = []
    try:
        os.makedirs(out_dir, exist_ok=True)
        overview = os.path.join(out_dir, OVERVIEW_FILE)
        _write(overview, render_overview(project_name, architecture, docs, generated_at))
        written.append(overview)
        for doc in docs:
            path = os.path.join(out_dir, page_name(doc))
            _write(path, render_node(doc))
            written.append(path)

        manifest = os.path.join(out_dir, MANIFEST_FILE)
        keep = [os.path.basename(p) for p in written]
        previous: list[str] = []
        if os.path.isfile(manifest):
            with open(manifest, encoding="utf-8") as fh:
                previous = fh.read().split()
        for name in set(previous) - set(keep):
            stale = os.path.join(out_dir, os.path.basename(name))
            if os.path.isfile(stale):
                os.remove(stale)
                logger.debug("Removed stale page %s", name)
        _write(manifest, "\n".join(keep) + "\n")
    except OSError as exc:
        raise PersistenceError(f"Cannot write markdown to {out_dir}: {exc}") from exc

    logger.info("Wrote %d markdown page(s) to %s", len(written), out_dir)
    return written
