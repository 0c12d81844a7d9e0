"""
Incremental synchronization: fingerprint cache, update cycle and file watcher.
"""

from .fingerprints import FileFingerprintCache
from .updater import IncrementalUpdater, UpdateReport, UpdateResult

__all__ = ["FileFingerprintCache", "IncrementalUpdater", "UpdateReport", "UpdateResult"]
