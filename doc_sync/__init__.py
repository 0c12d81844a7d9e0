"""
doc_sync: incremental code knowledge graph and retrieval engine.

Public API for library usage::

    from doc_sync import Workspace

    ws = Workspace("/path/to/repo")
    report = ws.sync()
    answer = ws.ask("where is the user service?")
"""

from .workspace import Workspace

__version__ = "1.0.0"

__all__ = ["Workspace", "__version__"]
