"""Core data types and component interfaces for overwrite batch processing."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Iterator, Optional, Tuple, Union

Logger = Union[logging.Logger, logging.LoggerAdapter]

# (file_info, local_source_path) -> (path_to_upload or None to skip, auto_remove)
OverwriteCallback = Callable[["FileInfo", str], Tuple[Optional[str], bool]]

# local_path -> processed_path (None or "" means intentional skip)
ProcessFunc = Callable[[str], Optional[str]]

# (processed, total)
ProgressCallback = Callable[[int, int], None]

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class FileInfo:
    """Metadata of a file or directory on a filesystem."""

    name: str = ""
    size: int = 0
    mode: int = 0
    mod_time: datetime = _ZERO_TIME
    is_dir: bool = False
    rel_path: str = ""
    abs_path: str = ""


@dataclass(frozen=True)
class WalkOptions:
    """Options for directory traversal."""

    include: Tuple[str, ...] = ()
    exclude: Tuple[str, ...] = ()
    follow_symlinks: bool = False
    max_depth: int = -1  # -1 means unlimited
    files_only: bool = False


@dataclass
class ScanAndFilterOptions:
    """Options for the scanning and filtering phase."""

    walk_options: WalkOptions = field(default_factory=WalkOptions)
    batch_size: int = 0
    estimated_total: int = 0
    progress_each: int = 0
    progress_callback: Optional[ProgressCallback] = None


@dataclass
class ProcessingOptions:
    """Options for the processing phase."""

    process_func: ProcessFunc
    concurrency: int = 1
    retry_count: int = 0
    retry_delay: float = 0.0  # seconds between attempts
    progress_each: int = 0
    progress_callback: Optional[ProgressCallback] = None


class FileSystem(ABC):
    """A filesystem that can be walked and whose files can be overwritten."""

    @abstractmethod
    def close(self) -> None:
        """Close the filesystem connection."""

    @abstractmethod
    def walk(self, options: WalkOptions) -> Iterator[FileInfo]:
        """Yield entries found under the root according to the options."""

    @abstractmethod
    def overwrite(self, rel_path: str, callback: OverwriteCallback) -> Optional[FileInfo]:
        """Download a file, pass it to the callback and upload the result.

        If the callback returns no path the upload is skipped. Returns the
        updated metadata of the remote file.
        """

    @abstractmethod
    def set_logger(self, logger: Logger) -> None:
        """Set the logger used by the filesystem."""

    @abstractmethod
    def get_url(self) -> str:
        """Return the base URL of the filesystem."""


class StatusMemory(ABC):
    """Remembers which files were processed and decides what needs processing."""

    @abstractmethod
    def needs_processing(self, entries: Iterable[FileInfo]) -> Iterator[FileInfo]:
        """Yield the entries that need processing."""

    @abstractmethod
    def report_done(self, file_info: FileInfo) -> None:
        """Record successful processing of a file."""

    @abstractmethod
    def report_error(self, file_info: FileInfo, error: BaseException) -> None:
        """Record a processing failure of a file."""

    @abstractmethod
    def set_logger(self, logger: Logger) -> None:
        """Set the logger used by the status memory."""


class BacklogManager(ABC):
    """Stores the list of relative paths waiting to be processed."""

    @abstractmethod
    def start_writing(self, rel_paths: Iterable[str]) -> None:
        """Write all relative paths to the backlog."""

    @abstractmethod
    def start_reading(self) -> Iterator[str]:
        """Yield the relative paths stored in the backlog."""

    @abstractmethod
    def count_rel_paths(self) -> int:
        """Return the number of relative paths in the backlog."""

    @abstractmethod
    def set_logger(self, logger: Logger) -> None:
        """Set the logger used by the backlog manager."""