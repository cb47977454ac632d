"""Status memory persisted on disk in an SQLite key-value table."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from typing import Dict, Iterable, Iterator, Optional

from ..types import FileInfo, Logger, StatusMemory
from .memory import FileStatus, _record, _requires_processing


class StatusStoreError(Exception):
    """Raised when the status database cannot be opened, read or written."""


class _DecodeError(Exception):
    pass


class PersistentStatusMemory(StatusMemory):
    """Status memory stored as JSON records keyed by relative path in a file."""

    def __init__(self, db_path: str) -> None:
        self.db_path = os.fspath(db_path)
        self._logger: Logger = logging.getLogger(__name__)
        self._lock = threading.RLock()
        parent = os.path.dirname(os.path.abspath(self.db_path))
        try:
            os.makedirs(parent, exist_ok=True)
        except OSError as exc:
            raise StatusStoreError(f"failed to create database directory: {exc}") from exc
        try:
            conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
            conn.execute("PRAGMA synchronous=OFF")
            conn.execute(
                "CREATE TABLE IF NOT EXISTS status (rel_path TEXT PRIMARY KEY, data TEXT NOT NULL)"
            )
        except sqlite3.Error as exc:
            raise StatusStoreError(f"failed to open status database: {exc}") from exc
        self._conn: Optional[sqlite3.Connection] = conn

    def close(self) -> None:
        """Close the database; closing twice is harmless."""
        with self._lock:
            if self._conn is not None:
                conn, self._conn = self._conn, None
                try:
                    conn.close()
                except sqlite3.Error as exc:
                    raise StatusStoreError(f"failed to close status database: {exc}") from exc

    def __enter__(self) -> "PersistentStatusMemory":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def set_logger(self, logger: Logger) -> None:
        """Set the logger used by this status memory."""
        self._logger = logger

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StatusStoreError("status database is closed")
        return self._conn

    def _read(self, rel_path: str) -> Optional[str]:
        with self._lock:
            conn = self._connection()
            try:
                row = conn.execute(
                    "SELECT data FROM status WHERE rel_path = ?", (rel_path,)
                ).fetchone()
            except sqlite3.Error as exc:
                raise StatusStoreError(f"failed to get status from database: {exc}") from exc
        return None if row is None else row[0]

    def _write(self, status: FileStatus, what: str) -> None:
        data = json.dumps(status.to_dict())
        with self._lock:
            conn = self._connection()
            try:
                conn.execute(
                    "INSERT OR REPLACE INTO status (rel_path, data) VALUES (?, ?)",
                    (status.rel_path, data),
                )
            except sqlite3.Error as exc:
                raise StatusStoreError(f"failed to store {what} in database: {exc}") from exc

    def _rows(self):
        with self._lock:
            conn = self._connection()
            return conn.execute("SELECT rel_path, data FROM status ORDER BY rel_path").fetchall()

    @staticmethod
    def _decode(raw: str) -> FileStatus:
        try:
            return FileStatus.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as exc:
            raise _DecodeError(str(exc)) from exc

    def _needs(self, file_info: FileInfo) -> bool:
        raw = self._read(file_info.rel_path)
        if raw is None:
            return True
        try:
            status = self._decode(raw)
        except _DecodeError as exc:
            self._logger.warning(
                "Failed to unmarshal status data, treating as needs processing: %s (%s)",
                file_info.rel_path, exc)
            return True
        return _requires_processing(status, file_info)

    def needs_processing(self, entries: Iterable[FileInfo]) -> Iterator[FileInfo]:
        """Yield the entries that need processing, in input order."""
        log = self._logger
        self._connection()
        log.debug("Starting needs processing evaluation")
        processed_count = 0
        needs_count = 0
        for file_info in entries:
            processed_count += 1
            try:
                needed = self._needs(file_info)
            except StatusStoreError as exc:
                log.error("Error checking if file needs processing: %s (%s)",
                          file_info.rel_path, exc)
                continue
            if needed:
                needs_count += 1
                log.debug("File needs processing: %s (size=%d, mod_time=%s)",
                          file_info.rel_path, file_info.size, file_info.mod_time)
                yield file_info
            else:
                log.debug("File does not need processing: %s", file_info.rel_path)
        log.info("NeedsProcessing completed (total_processed=%d, needs_processing=%d)",
                 processed_count, needs_count)

    def report_done(self, file_info: FileInfo) -> None:
        """Record that the file was processed successfully."""
        self._logger.debug("Reporting file processing done: %s (size=%d)",
                           file_info.rel_path, file_info.size)
        self._write(_record(file_info), "status")
        self._logger.info("File processing completed successfully: %s", file_info.rel_path)

    def report_error(self, file_info: FileInfo, error: BaseException) -> None:
        """Record that processing the file failed with the given error."""
        self._logger.debug("Reporting file processing error: %s (%s)", file_info.rel_path, error)
        self._write(_record(file_info, error), "error status")
        self._logger.error("File processing failed: %s (%s)", file_info.rel_path, error)

    def get_status(self, rel_path: str) -> Optional[FileStatus]:
        """Return the stored status of a file, or None if unknown or unreadable."""
        try:
            raw = self._read(rel_path)
        except StatusStoreError as exc:
            if self._conn is None:
                raise
            self._logger.error("Failed to get status from database: %s (%s)", rel_path, exc)
            return None
        if raw is None:
            return None
        try:
            return self._decode(raw)
        except _DecodeError as exc:
            self._logger.error("Failed to unmarshal status data: %s (%s)", rel_path, exc)
            return None

    def get_all_status(self) -> Dict[str, FileStatus]:
        """Return all readable stored statuses keyed by relative path."""
        result: Dict[str, FileStatus] = {}
        try:
            rows = self._rows()
        except sqlite3.Error as exc:
            self._logger.error("Iterator error during GetAllStatus: %s", exc)
            return result
        for key, raw in rows:
            try:
                result[key] = self._decode(raw)
            except _DecodeError as exc:
                self._logger.warning(
                    "Failed to unmarshal status data during GetAllStatus: %s (%s)", key, exc)
        return result

    def clear(self) -> None:
        """Remove all stored statuses."""
        with self._lock:
            conn = self._connection()
            try:
                conn.execute("DELETE FROM status")
            except sqlite3.Error as exc:
                raise StatusStoreError(f"failed to clear database: {exc}") from exc
        self._logger.debug("All status information cleared")

    def count(self) -> int:
        """Return the number of tracked files."""
        with self._lock:
            conn = self._connection()
            try:
                return conn.execute("SELECT COUNT(*) FROM status").fetchone()[0]
            except sqlite3.Error as exc:
                self._logger.error("Iterator error during count: %s", exc)
                return 0