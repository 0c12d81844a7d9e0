"""
Exception types raised by the engine.

Per-file and per-source failures are contained where they happen and
reported as structured status; the exceptions below are the ones that
reach callers.
"""


class DocSyncError(Exception):
    """Base class for all engine errors."""


class ParseError(DocSyncError):
    """A single source file could not be parsed.  Recoverable."""

    def __init__(self, file_path: str, reason: str) -> None:
        super().__init__(f"{file_path}: {reason}")
        self.file_path = file_path
        self.reason = reason


class GraphConstructionError(DocSyncError):
    """Graph construction failed, usually on a duplicate node id."""


class GeneratorUnavailableError(DocSyncError):
    """Generated documentation was requested but no generator is usable."""


class PersistenceError(DocSyncError):
    """Reading or writing persisted state failed.  Nothing was committed."""
