"""In-memory status memory keyed by relative path."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional

from ..types import FileInfo, Logger, StatusMemory


@dataclass(frozen=True)
class FileStatus:
    """The recorded processing status of one file."""

    rel_path: str
    size: int
    mod_time: datetime
    processed: bool
    last_error: str = ""
    processed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-compatible mapping of this status."""
        data: Dict[str, Any] = {
            "rel_path": self.rel_path,
            "size": self.size,
            "mod_time": self.mod_time.isoformat(),
            "processed": self.processed,
        }
        if self.last_error:
            data["last_error"] = self.last_error
        if self.processed_at is not None:
            data["processed_at"] = self.processed_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FileStatus":
        """Build a status from a mapping produced by :meth:`to_dict`."""
        processed_at = data.get("processed_at")
        return cls(
            rel_path=str(data["rel_path"]),
            size=int(data["size"]),
            mod_time=datetime.fromisoformat(data["mod_time"]),
            processed=bool(data["processed"]),
            last_error=str(data.get("last_error") or ""),
            processed_at=datetime.fromisoformat(processed_at) if processed_at else None,
        )


def _record(file_info: FileInfo, error: Optional[BaseException] = None) -> FileStatus:
    return FileStatus(
        rel_path=file_info.rel_path,
        size=file_info.size,
        mod_time=file_info.mod_time,
        processed=error is None,
        last_error="" if error is None else str(error),
        processed_at=datetime.now(timezone.utc),
    )


def _requires_processing(status: Optional[FileStatus], file_info: FileInfo) -> bool:
    """Decide whether a file needs work given its stored status."""
    if status is None:
        return True
    if status.mod_time != file_info.mod_time or status.size != file_info.size:
        return True
    return not status.processed or bool(status.last_error)


class MemoryStatusMemory(StatusMemory):
    """Status memory held in a dictionary; a file needs processing when it is
    unknown, its size or modification time changed, or its last run failed."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._status: Dict[str, FileStatus] = {}
        self._logger: Logger = logging.getLogger(__name__)

    def set_logger(self, logger: Logger) -> None:
        """Set the logger used by this status memory."""
        self._logger = logger

    def needs_processing(self, entries: Iterable[FileInfo]) -> Iterator[FileInfo]:
        """Yield the entries that need processing, in input order."""
        log = self._logger
        log.debug("Starting needs processing evaluation")
        processed_count = 0
        needs_count = 0
        for file_info in entries:
            processed_count += 1
            with self._lock:
                needed = _requires_processing(self._status.get(file_info.rel_path), file_info)
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
        with self._lock:
            self._status[file_info.rel_path] = _record(file_info)
        self._logger.info("File processing completed successfully: %s", file_info.rel_path)

    def report_error(self, file_info: FileInfo, error: BaseException) -> None:
        """Record that processing the file failed with the given error."""
        self._logger.debug("Reporting file processing error: %s (%s)", file_info.rel_path, error)
        with self._lock:
            self._status[file_info.rel_path] = _record(file_info, error)
        self._logger.error("File processing failed: %s (%s)", file_info.rel_path, error)

    def get_status(self, rel_path: str) -> Optional[FileStatus]:
        """Return the stored status of a file, or None if unknown."""
        with self._lock:
            return self._status.get(rel_path)

    def get_all_status(self) -> Dict[str, FileStatus]:
        """Return a snapshot of all stored statuses."""
        with self._lock:
            return dict(self._status)

    def clear(self) -> None:
        """Forget all stored statuses."""
        with self._lock:
            self._status = {}
        self._logger.debug("All status information cleared")

    def count(self) -> int:
        """Return the number of tracked files."""
        with self._lock:
            return len(self._status)