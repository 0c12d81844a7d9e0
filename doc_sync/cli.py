"""
`doc-sync` command line interface.

Commands
--------
doc-sync sync                      -- incremental sync of the workspace
doc-sync sync --rebuild            -- forget fingerprints and analyze everything
doc-sync sync --watch              -- sync, then keep watching for changes
doc-sync sync --generate           -- also replace summaries with generated ones
doc-sync status                    -- show state summary
doc-sync export [-o FILE]          -- dump the graph as JSON
doc-sync docs [-o DIR]             -- write markdown pages (overview + one per node)
doc-sync node <id>                 -- node detail with documentation
doc-sync deps <id> [--dependents]  -- outgoing (or incoming) dependencies
doc-sync search "<query>" [-k N] [--external]
doc-sync ask "<question>" [--generate]
doc-sync entry-points              -- callables and modules nothing depends on
doc-sync architecture              -- counts, entry points, patterns, languages
doc-sync watch                     -- watch without an initial sync

Global options: --root DIR, --config FILE, --persona NAME, -v / -vv.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Optional

from tqdm import tqdm

from .config import Config
from .docs.generator import PERSONAS
from .errors import DocSyncError
from .llm.ollama import OllamaGenerator
from .log import setup_logger
from .sync.updater import UpdateReport
from .workspace import Workspace

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _print_nodes(nodes, title: str) -> None:
    if not nodes:
        print(f"  (no results for: {title})")
        return
    print(f"\n{title}  [{len(nodes)} result(s)]")
    print("-" * 60)
    for n in nodes:
        label = f"{n.type:<10}  {n.label}"
        print(f"  {label:<50}  {n.file_path}:{n.start_line}-{n.end_line}")


def _print_report(report: UpdateReport) -> None:
    print(
        f"\nSync complete:\n"
        f"  Nodes added:    {report.nodes_added}\n"
        f"  Nodes modified: {report.nodes_modified}\n"
        f"  Nodes removed:  {report.nodes_removed}\n"
        f"  Files:          +{len(report.files_added)} ~{len(report.files_modified)} "
        f"-{len(report.files_removed)}\n"
        f"  Skipped:        {len(report.skipped_files)}\n"
        f"  Time:           {report.elapsed_seconds:.1f}s"
    )
    for path in report.skipped_files:
        print(f"    skipped: {path}")
    if report.cancelled:
        print("  (cancelled; remaining files will be picked up next sync)")


def _run_sync(ws: Workspace, rebuild: bool) -> UpdateReport:
    pbar = tqdm(total=None, unit="file", desc="Parsing", disable=not sys.stderr.isatty())

    def _progress(current: int, total: int, filename: str) -> None:
        if pbar.total != total:
            pbar.total = total
            pbar.refresh()
        pbar.set_postfix_str(os.path.basename(filename), refresh=False)
        pbar.update(1)

    try:
        if rebuild:
            return ws.rebuild(progress_callback=_progress)
        return ws.sync(progress_callback=_progress)
    finally:
        pbar.close()


def _watch(ws: Workspace) -> None:
    print("\nWatching for changes... (Ctrl+C to stop)")
    ws.watch().start()  # blocking
    print("\nFile watcher stopped.")


# ---------------------------------------------------------------------------
# Sub-command handlers
# ---------------------------------------------------------------------------

def _cmd_sync(ws: Workspace, args: argparse.Namespace) -> int:
    print(f"Syncing workspace: {ws.root}")
    report = _run_sync(ws, args.rebuild)
    _print_report(report)
    if args.generate:
        updated = ws.generate_docs()
        print(f"  Generated summaries: {updated}")
    if args.watch:
        _watch(ws)
    return 0


def _cmd_status(ws: Workspace, args: argparse.Namespace) -> int:
    status = ws.status()
    print("\nWorkspace Status")
    print("=" * 40)
    for k, v in status.items():
        print(f"  {k:<20} {v}")
    print()
    return 0


def _cmd_export(ws: Workspace, args: argparse.Namespace) -> int:
    data = ws.export_graph()
    if args.output:
        with open(args.output, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2, ensure_ascii=False)
        print(f"Wrote {len(data['nodes'])} nodes and {len(data['edges'])} edges to {args.output}")
    else:
        _print_json(data)
    return 0


def _cmd_docs(ws: Workspace, args: argparse.Namespace) -> int:
    paths = ws.export_markdown(args.output)
    print(f"Wrote {len(paths)} markdown page(s) to {os.path.dirname(paths[0])}")
    return 0


def _cmd_node(ws: Workspace, args: argparse.Namespace) -> int:
    detail = ws.get_node(args.id)
    if detail is None:
        print(f"Unknown node: {args.id}", file=sys.stderr)
        return 1
    _print_json(detail)
    return 0


def _cmd_deps(ws: Workspace, args: argparse.Namespace) -> int:
    if args.dependents:
        _print_nodes(ws.dependents(args.id), f"Dependents of '{args.id}'")
    else:
        _print_nodes(ws.dependencies(args.id), f"Dependencies of '{args.id}'")
    return 0


def _cmd_search(ws: Workspace, args: argparse.Namespace) -> int:
    if args.external:
        _print_json(ws.search_with_external(args.query, args.top_k).to_dict())
        return 0
    hits = ws.search(args.query, args.top_k)
    if not hits:
        print(f"  (no results for: {args.query})")
        return 0
    print(f"\nResults for '{args.query}'  [{len(hits)} result(s)]")
    print("-" * 60)
    for hit in hits:
        meta = hit.metadata
        print(f"  {hit.score:7.2f}  {meta.get('type', ''):<10}  {hit.name:<30}  "
              f"{meta.get('filePath', '')}:{meta.get('startLine', 0)}")
    return 0


def _cmd_ask(ws: Workspace, args: argparse.Namespace) -> int:
    answer = ws.ask(args.question, args.top_k, use_generator=args.generate)
    print(answer.answer)
    print(f"\nConfidence: {answer.confidence}  (strategy: {answer.strategy})")
    for node_id in answer.relevant_node_ids:
        print(f"  - {node_id}")
    return 0


def _cmd_entry_points(ws: Workspace, args: argparse.Namespace) -> int:
    _print_nodes(ws.entry_points(), "Entry points")
    return 0


def _cmd_architecture(ws: Workspace, args: argparse.Namespace) -> int:
    _print_json(ws.architecture())
    return 0


def _cmd_watch(ws: Workspace, args: argparse.Namespace) -> int:
    _watch(ws)
    return 0


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="doc-sync",
        description="Incremental code knowledge graph, documentation and retrieval",
    )
    parser.add_argument("--root", default=None, help="Workspace root (default: current directory)")
    parser.add_argument("--config", default=None, help="Path to a .doc_sync.yaml file")
    parser.add_argument("--persona", choices=PERSONAS, default=None,
                        help="Documentation persona (overrides config)")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="Increase console log level (-v info, -vv debug)")
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    # --- sync ---
    sync_p = subparsers.add_parser("sync", help="Incrementally sync the workspace")
    sync_p.add_argument("--rebuild", action="store_true",
                        help="Re-analyze every file, ignoring fingerprints")
    sync_p.add_argument("--watch", action="store_true",
                        help="Keep watching for changes after syncing")
    sync_p.add_argument("--generate", action="store_true",
                        help="Replace summaries with text-generator output")
    sync_p.set_defaults(func=_cmd_sync)

    # --- status ---
    status_p = subparsers.add_parser("status", help="Show workspace state summary")
    status_p.set_defaults(func=_cmd_status)

    # --- export ---
    export_p = subparsers.add_parser("export", help="Export the graph as JSON")
    export_p.add_argument("-o", "--output", default=None, help="Write to FILE instead of stdout")
    export_p.set_defaults(func=_cmd_export)

    # --- docs ---
    docs_p = subparsers.add_parser("docs", help="Write the documentation as markdown pages")
    docs_p.add_argument("-o", "--output", default=None,
                        help="Output directory (default: <state dir>/docs)")
    docs_p.set_defaults(func=_cmd_docs)

    # --- node ---
    node_p = subparsers.add_parser("node", help="Show one node with its documentation")
    node_p.add_argument("id", help="Node id")
    node_p.set_defaults(func=_cmd_node)

    # --- deps ---
    deps_p = subparsers.add_parser("deps", help="List dependencies of a node")
    deps_p.add_argument("id", help="Node id")
    deps_p.add_argument("--dependents", action="store_true",
                        help="List incoming dependencies instead")
    deps_p.set_defaults(func=_cmd_deps)

    # --- search ---
    search_p = subparsers.add_parser("search", help="Keyword search over documented nodes")
    search_p.add_argument("query", help="Search query")
    search_p.add_argument("-k", "--top-k", type=int, default=None, dest="top_k",
                          help="Number of results")
    search_p.add_argument("--external", action="store_true",
                          help="Also query the configured external sources")
    search_p.set_defaults(func=_cmd_search)

    # --- ask ---
    ask_p = subparsers.add_parser("ask", help="Answer a question about the code")
    ask_p.add_argument("question", help="Free-text question")
    ask_p.add_argument("-k", "--top-k", type=int, default=None, dest="top_k",
                       help="Number of hits to consider")
    ask_p.add_argument("--generate", action="store_true",
                       help="Let the text generator phrase the answer")
    ask_p.set_defaults(func=_cmd_ask)

    # --- entry-points ---
    ep_p = subparsers.add_parser("entry-points", help="List entry points")
    ep_p.set_defaults(func=_cmd_entry_points)

    # --- architecture ---
    arch_p = subparsers.add_parser("architecture", help="Show an architecture overview")
    arch_p.set_defaults(func=_cmd_architecture)

    # --- watch ---
    watch_p = subparsers.add_parser("watch", help="Watch the workspace and sync on change")
    watch_p.set_defaults(func=_cmd_watch)

    return parser


def _wants_generator(args: argparse.Namespace, config: Config) -> bool:
    return bool(getattr(args, "generate", False) or config.PREFER_GENERATED)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for ``doc-sync``.

    Returns the process exit code: 0 on success, 1 on engine errors.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    root = os.path.abspath(args.root or os.getcwd())
    if not os.path.isdir(root):
        print(f"Error: workspace root is not a directory: {root}", file=sys.stderr)
        return 1
    config = Config.load(args.config, root)
    if args.persona:
        config.PERSONA = args.persona
    if args.verbose:
        config.LOG_LEVEL = "DEBUG" if args.verbose > 1 else "INFO"
    setup_logger(os.path.join(config.state_path(root), "logs"), config.LOG_LEVEL)

    generator = None
    if _wants_generator(args, config):
        generator = OllamaGenerator(
            config.OLLAMA_BASE_URL,
            config.OLLAMA_MODEL,
            max_retries=config.LLM_MAX_RETRIES,
            retry_delay=config.LLM_RETRY_DELAY,
        )

    try:
        ws = Workspace(root, config, generator=generator)
        return args.func(ws, args)
    except (DocSyncError, ValueError) as exc:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
