"""
SQLite-backed file fingerprint cache.

Stores one content hash per tracked source file so the incremental updater
can tell unchanged files from modified, added and removed ones without
re-parsing anything.
"""

from __future__ import annotations

import hashlib
import logging
import os
import sqlite3
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from ..errors import PersistenceError

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS fingerprints (
    path            TEXT    PRIMARY KEY,
    hash            TEXT    NOT NULL,
    last_analyzed   REAL    NOT NULL DEFAULT 0.0
);
"""


@dataclass
class FileFingerprint:
    """Stored fingerprint for a single file."""
    path: str
    hash: str
    last_analyzed: float


def compute_hash(data: bytes) -> str:
    """SHA-256 hex digest of *data*."""
    return hashlib.sha256(data).hexdigest()


class FileFingerprintCache:
    """
    Persistent ``path → content hash`` mapping for one workspace.

    Paths are stored as given (the updater uses root-relative paths).  A
    missing entry means the file was never analyzed.  Every storage failure
    is raised as :class:`PersistenceError`.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Will be created if absent.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        try:
            os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Cannot create cache directory for {db_path}: {exc}") from exc
        self._init_db()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _connect(self):
        """Yield a connected SQLite connection with WAL mode for concurrency."""
        try:
            conn = sqlite3.connect(self._db_path, timeout=10)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot open fingerprint cache {self._db_path}: {exc}") from exc
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.row_factory = sqlite3.Row
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise PersistenceError(f"Fingerprint cache error: {exc}") from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.executescript(_SCHEMA)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, path: str) -> Optional[str]:
        """
        Return the stored hash for *path*, or None if never analyzed.

        Parameters
        ----------
        path:
            File path (as stored).
        """
        record = self.get_record(path)
        return record.hash if record else None

    def get_record(self, path: str) -> Optional[FileFingerprint]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT path, hash, last_analyzed FROM fingerprints WHERE path = ?",
                (path,),
            ).fetchone()
        if row is None:
            return None
        return FileFingerprint(row["path"], row["hash"], row["last_analyzed"])

    def set(self, path: str, hash_: str) -> None:
        """
        Insert or update the fingerprint for *path*.

        Parameters
        ----------
        path:
            File path (used as unique key).
        hash_:
            SHA-256 hash of file contents.
        """
        self.set_many({path: hash_})

    def set_many(self, hashes: Mapping[str, str]) -> None:
        """Upsert several fingerprints in one transaction."""
        if hashes:
            self.commit(hashes, ())

    def remove(self, path: str) -> None:
        """
        Remove the fingerprint for *path*.

        Safe to call even if *path* is not in the cache.
        """
        self.remove_many([path])

    def remove_many(self, paths: Iterable[str]) -> None:
        paths = list(paths)
        if paths:
            self.commit({}, paths)

    def commit(
        self,
        hashes: Mapping[str, str],
        removed: Iterable[str],
        replace_all: bool = False,
    ) -> None:
        """
        Apply upserts and removals atomically.

        With *replace_all* every existing fingerprint is dropped in the same
        transaction, so the cache ends up holding exactly *hashes*.
        """
        now = time.time()
        removed = list(removed)
        with self._connect() as conn:
            if replace_all:
                conn.execute("DELETE FROM fingerprints")
            if hashes:
                conn.executemany(
                    """
                    INSERT INTO fingerprints (path, hash, last_analyzed)
                    VALUES (?, ?, ?)
                    ON CONFLICT(path) DO UPDATE SET
                        hash          = excluded.hash,
                        last_analyzed = excluded.last_analyzed
                    """,
                    [(p, h, now) for p, h in hashes.items()],
                )
            if removed:
                conn.executemany(
                    "DELETE FROM fingerprints WHERE path = ?", [(p,) for p in removed],
                )

    def all_paths(self) -> set[str]:
        """Return the paths of every file currently fingerprinted."""
        with self._connect() as conn:
            rows = conn.execute("SELECT path FROM fingerprints").fetchall()
        return {r["path"] for r in rows}

    def all_hashes(self) -> dict[str, str]:
        with self._connect() as conn:
            rows = conn.execute("SELECT path, hash FROM fingerprints").fetchall()
        return {r["path"]: r["hash"] for r in rows}

    def stats(self) -> dict:
        """
        Return aggregate statistics about the cache.

        Returns
        -------
        dict
            Keys: file_count, last_analyzed (epoch seconds or None).
        """
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS cnt, MAX(last_analyzed) AS latest FROM fingerprints"
            ).fetchone()
        return {"file_count": row["cnt"], "last_analyzed": row["latest"]}

    def clear(self) -> None:
        """Delete every fingerprint."""
        with self._connect() as conn:
            conn.execute("DELETE FROM fingerprints")
