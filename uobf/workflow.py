"""The two-phase overwrite batch workflow: scan and filter, then process."""

from __future__ import annotations

import logging
import os
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Iterator, List, Optional, Tuple, TypeVar

from .types import (
    BacklogManager,
    FileInfo,
    FileSystem,
    Logger,
    ProcessingOptions,
    ScanAndFilterOptions,
    StatusMemory,
)

_T = TypeVar("_T")
_EXHAUSTED = object()


class OverwriteWorkflow:
    """Scans a filesystem for files needing work and overwrites them in parallel."""

    def __init__(self, fs: FileSystem, status_memory: StatusMemory,
                 backlog_manager: BacklogManager) -> None:
        self._fs = fs
        self._status_memory = status_memory
        self._backlog_manager = backlog_manager
        self._logger: Logger = logging.getLogger(__name__)

    def set_logger(self, logger: Logger) -> None:
        """Set the logger and hand component-tagged loggers to the parts."""
        self._logger = logger
        self._fs.set_logger(logging.LoggerAdapter(logger, {"component": "filesystem"}))
        self._status_memory.set_logger(
            logging.LoggerAdapter(logger, {"component": "status_memory"}))
        self._backlog_manager.set_logger(
            logging.LoggerAdapter(logger, {"component": "backlog_manager"}))

    def scan_and_filter(self, options: ScanAndFilterOptions) -> None:
        """Walk the filesystem, keep files needing work and write them to the backlog."""
        log = self._logger
        log.info("Starting scan and filter phase (estimated_total=%d)", options.estimated_total)

        walk_errors: List[Exception] = []

        def walked() -> Iterator[FileInfo]:
            try:
                yield from self._fs.walk(options.walk_options)
            except Exception as exc:
                log.error("Error during filesystem walk: %s", exc)
                walk_errors.append(exc)

        log.debug("Starting status memory filtering")
        try:
            filtered = self._status_memory.needs_processing(walked())
        except Exception as exc:
            log.error("Error during status memory filtering: %s", exc)
            raise

        log.debug("Writing backlog file")
        try:
            self._backlog_manager.start_writing(info.rel_path for info in filtered)
        except Exception as exc:
            log.error("Error writing backlog file: %s", exc)
            raise

        if walk_errors:
            log.error("Filesystem walk error detected: %s", walk_errors[0])
            raise walk_errors[0]

        log.info("Scan and filter phase completed")

    def process_files(self, options: ProcessingOptions) -> int:
        """Process every file in the backlog and return how many succeeded.

        Failures of single files are logged and reported to the status memory;
        they do not stop the run.
        """
        if options.concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        log = self._logger
        log.info("Starting file processing phase (concurrency=%d, retry_count=%d)",
                 options.concurrency, options.retry_count)

        try:
            total = self._backlog_manager.count_rel_paths()
        except Exception as exc:
            log.error("Error counting backlog entries: %s", exc)
            raise
        log.info("Backlog file loaded (total_files=%d)", total)

        try:
            rel_paths = iter(self._backlog_manager.start_reading())
        except Exception as exc:
            log.error("Error reading backlog file: %s", exc)
            raise

        log.info("Starting concurrent file processing (workers=%d)", options.concurrency)
        return self._process_concurrently(rel_paths, total, options)

    def _process_concurrently(self, rel_paths: Iterator[str], total: int,
                              options: ProcessingOptions) -> int:
        source_lock = threading.Lock()
        progress_lock = threading.Lock()
        read_errors: List[Exception] = []
        processed = 0

        def next_path():
            with source_lock:
                if read_errors:
                    return _EXHAUSTED
                try:
                    return next(rel_paths, _EXHAUSTED)
                except Exception as exc:
                    self._logger.error("Error reading backlog entries: %s", exc)
                    read_errors.append(exc)
                    return _EXHAUSTED

        def worker(worker_id: int) -> None:
            nonlocal processed
            while True:
                rel_path = next_path()
                if rel_path is _EXHAUSTED:
                    return
                try:
                    self._process_file(rel_path, options)
                except Exception as exc:
                    self._logger.error("Failed to process file %s (worker=%d): %s",
                                       rel_path, worker_id, exc)
                    continue
                with progress_lock:
                    processed += 1
                    current = processed
                    if (options.progress_callback is not None and options.progress_each > 0
                            and current % options.progress_each == 0):
                        options.progress_callback(current, total)

        threads = [threading.Thread(target=worker, args=(i,), daemon=True)
                   for i in range(options.concurrency)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        if options.progress_callback is not None:
            options.progress_callback(processed, total)
        self._logger.info("File processing completed (total_processed=%d, total_expected=%d)",
                          processed, total)
        if read_errors:
            raise read_errors[0]
        return processed

    def _process_file(self, rel_path: str, options: ProcessingOptions) -> None:
        log = self._logger
        log.debug("Starting file processing: %s", rel_path)

        def callback(file_info: FileInfo, src_path: str) -> Tuple[Optional[str], bool]:
            try:
                processed_path = options.process_func(src_path)
            except Exception as exc:
                log.error("Processing failed for %s: %s", rel_path, exc)
                self._report_error(file_info, exc)
                raise
            log.debug("File processed: %s -> %s", rel_path, processed_path)
            if not processed_path:
                return None, False
            return processed_path, processed_path != src_path

        try:
            uploaded = _with_retries(lambda: self._fs.overwrite(rel_path, callback),
                                     options.retry_count, options.retry_delay, log)
        except Exception as exc:
            placeholder = FileInfo(
                name=os.path.basename(os.path.normpath(rel_path)),
                rel_path=rel_path,
                abs_path=rel_path,
                size=0,
                mod_time=datetime.now(timezone.utc),
                is_dir=False,
            )
            self._report_error(placeholder, exc)
            raise

        if uploaded is not None:
            log.info("File uploaded successfully: %s (size=%d)", rel_path, uploaded.size)
            try:
                self._status_memory.report_done(uploaded)
            except Exception as exc:
                log.warning("Failed to report completion for %s: %s", rel_path, exc)

    def _report_error(self, file_info: FileInfo, error: Exception) -> None:
        try:
            self._status_memory.report_error(file_info, error)
        except Exception as exc:
            self._logger.warning("Failed to report error to status memory: %s", exc)


def _with_retries(action: Callable[[], _T], retry_count: int, delay: float,
                  log: Logger) -> _T:
    attempts = max(retry_count, 0) + 1
    for attempt in range(1, attempts + 1):
        try:
            return action()
        except Exception as exc:
            if attempt >= attempts:
                raise
            log.debug("Attempt %d/%d failed, retrying: %s", attempt, attempts, exc)
            if delay > 0:
                time.sleep(delay)
    raise AssertionError("unreachable")