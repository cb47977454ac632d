import logging
import threading
from datetime import datetime, timedelta, timezone

import pytest

from uobf.types import (
    BacklogManager,
    FileInfo,
    FileSystem,
    ProcessingOptions,
    ScanAndFilterOptions,
    StatusMemory,
    WalkOptions,
)
from uobf.workflow import OverwriteWorkflow


class SampleError(Exception):
    pass


ERR_TEST = SampleError("test error")


class MockFileSystem(FileSystem):
    def __init__(self):
        self.walk_func = None
        self.overwrite_func = None
        self.loggers = []

    def close(self):
        pass

    def walk(self, options):
        if self.walk_func is not None:
            return self.walk_func(options)
        return iter(())

    def overwrite(self, rel_path, callback):
        if self.overwrite_func is not None:
            return self.overwrite_func(rel_path, callback)
        info = FileInfo(name="test.txt", rel_path=rel_path, abs_path="/abs/" + rel_path,
                        size=1024, mod_time=datetime.now(timezone.utc))
        callback(info, "/tmp/test-" + rel_path)
        return info

    def set_logger(self, logger):
        self.loggers.append(logger)

    def get_url(self):
        return "mock://test"


class MockStatusMemory(StatusMemory):
    def __init__(self):
        self.needs_processing_func = None
        self.done = []
        self.errors = []
        self.loggers = []
        self._lock = threading.Lock()

    def needs_processing(self, entries):
        if self.needs_processing_func is not None:
            return self.needs_processing_func(entries)
        return (entry for entry in entries)

    def report_done(self, file_info):
        with self._lock:
            self.done.append(file_info)

    def report_error(self, file_info, error):
        with self._lock:
            self.errors.append((file_info, error))

    def set_logger(self, logger):
        self.loggers.append(logger)


class MockBacklogManager(BacklogManager):
    def __init__(self, paths=None):
        self.paths = list(paths or [])
        self.written = []
        self.start_writing_func = None
        self.count_func = None
        self.loggers = []

    def start_writing(self, rel_paths):
        if self.start_writing_func is not None:
            return self.start_writing_func(rel_paths)
        self.written.extend(rel_paths)

    def start_reading(self):
        return iter(self.paths)

    def count_rel_paths(self):
        if self.count_func is not None:
            return self.count_func()
        return len(self.paths)

    def set_logger(self, logger):
        self.loggers.append(logger)


class ProgressTracker:
    def __init__(self):
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, processed, total):
        with self._lock:
            self.calls.append((processed, total))


def create_test_workflow(paths=None):
    fs = MockFileSystem()
    status = MockStatusMemory()
    backlog = MockBacklogManager(paths)
    return OverwriteWorkflow(fs, status, backlog), fs, status, backlog


def create_test_file_infos(count):
    base = datetime.now(timezone.utc)
    return [
        FileInfo(name=f"file{i}.txt", rel_path=f"file{i}.txt", abs_path=f"/root/file{i}.txt",
                 size=1000 + i, mod_time=base + timedelta(seconds=i))
        for i in range(count)
    ]


def passthrough(path):
    return path


def test_scan_and_filter_success():
    workflow, fs, _, backlog = create_test_workflow()
    files = create_test_file_infos(3)
    seen_options = []

    def walk(options):
        seen_options.append(options)
        yield from files

    fs.walk_func = walk
    workflow.scan_and_filter(ScanAndFilterOptions(walk_options=WalkOptions(include=("*.txt",))))
    assert backlog.written == [f.rel_path for f in files]
    assert seen_options[0].include == ("*.txt",)


def test_scan_and_filter_filesystem_error():
    workflow, fs, _, _ = create_test_workflow()

    def walk(options):
        raise ERR_TEST
        yield  # pragma: no cover

    fs.walk_func = walk
    with pytest.raises(SampleError) as info:
        workflow.scan_and_filter(ScanAndFilterOptions())
    assert info.value is ERR_TEST


def test_scan_and_filter_walk_error_after_entries_still_writes_backlog():
    workflow, fs, _, backlog = create_test_workflow()
    files = create_test_file_infos(2)

    def walk(options):
        yield from files
        raise ERR_TEST

    fs.walk_func = walk
    with pytest.raises(SampleError):
        workflow.scan_and_filter(ScanAndFilterOptions())
    assert backlog.written == ["file0.txt", "file1.txt"]


def test_scan_and_filter_status_memory_error():
    workflow, fs, status, _ = create_test_workflow()
    fs.walk_func = lambda options: iter(create_test_file_infos(2))

    def failing(entries):
        raise ERR_TEST

    status.needs_processing_func = failing
    with pytest.raises(SampleError) as info:
        workflow.scan_and_filter(ScanAndFilterOptions())
    assert info.value is ERR_TEST


def test_scan_and_filter_backlog_error():
    workflow, fs, _, backlog = create_test_workflow()
    fs.walk_func = lambda options: iter(create_test_file_infos(2))

    def failing(rel_paths):
        list(rel_paths)
        raise ERR_TEST

    backlog.start_writing_func = failing
    with pytest.raises(SampleError) as info:
        workflow.scan_and_filter(ScanAndFilterOptions())
    assert info.value is ERR_TEST


def test_scan_and_filter_respects_status_filter():
    workflow, fs, status, backlog = create_test_workflow()
    fs.walk_func = lambda options: iter(create_test_file_infos(4))
    status.needs_processing_func = lambda entries: (e for e in entries if e.size % 2 == 0)
    workflow.scan_and_filter(ScanAndFilterOptions())
    assert backlog.written == ["file0.txt", "file2.txt"]


def test_process_files_success():
    paths = ["file1.txt", "file2.txt"]
    workflow, _, status, _ = create_test_workflow(paths)
    tracker = ProgressTracker()
    options = ProcessingOptions(process_func=passthrough, concurrency=2, retry_count=3,
                                retry_delay=0.01, progress_each=1, progress_callback=tracker)
    result = workflow.process_files(options)
    assert result == 2
    assert sorted(info.rel_path for info in status.done) == paths
    assert len(tracker.calls) > 0
    assert tracker.calls[-1] == (2, 2)


def test_process_files_download_error():
    workflow, fs, status, _ = create_test_workflow(["file1.txt"])

    def failing(rel_path, callback):
        raise ERR_TEST

    fs.overwrite_func = failing
    result = workflow.process_files(ProcessingOptions(process_func=passthrough, concurrency=1))
    assert result == 0
    assert len(status.errors) == 1
    info, error = status.errors[0]
    assert error is ERR_TEST
    assert info.rel_path == "file1.txt"
    assert info.name == "file1.txt"
    assert info.size == 0


def test_process_files_backlog_error():
    workflow, _, _, backlog = create_test_workflow()

    def failing():
        raise ERR_TEST

    backlog.count_func = failing
    with pytest.raises(SampleError) as info:
        workflow.process_files(ProcessingOptions(process_func=passthrough))
    assert info.value is ERR_TEST


def test_process_files_retries_until_success():
    workflow, fs, status, _ = create_test_workflow(["a.txt"])
    attempts = []

    def flaky(rel_path, callback):
        attempts.append(rel_path)
        if len(attempts) < 3:
            raise ERR_TEST
        info = FileInfo(name="a.txt", rel_path=rel_path, size=5)
        callback(info, "/tmp/a.txt")
        return info

    fs.overwrite_func = flaky
    result = workflow.process_files(ProcessingOptions(process_func=passthrough, retry_count=3))
    assert len(attempts) == 3
    assert result == 1
    assert [i.rel_path for i in status.done] == ["a.txt"]
    assert status.errors == []


def test_process_func_error_is_reported():
    workflow, _, status, _ = create_test_workflow(["a.txt"])

    def failing(path):
        raise ERR_TEST

    result = workflow.process_files(ProcessingOptions(process_func=failing))
    assert result == 0
    assert status.done == []
    # once from the callback with the real metadata, once after giving up
    assert len(status.errors) == 2
    assert status.errors[0][0].size == 1024
    assert all(err is ERR_TEST for _, err in status.errors)


def test_callback_results_for_skip_and_new_file():
    workflow, fs, status, _ = create_test_workflow(["same", "skip", "other"])
    results = {}
    lock = threading.Lock()

    def overwrite(rel_path, callback):
        info = FileInfo(rel_path=rel_path)
        outcome = callback(info, "/tmp/src-" + rel_path)
        with lock:
            results[rel_path] = outcome
        return info

    outputs = {
        "/tmp/src-same": "/tmp/src-same",
        "/tmp/src-skip": None,
        "/tmp/src-other": "/tmp/out",
    }
    fs.overwrite_func = overwrite
    result = workflow.process_files(ProcessingOptions(process_func=outputs.__getitem__, concurrency=1))
    assert result == 3
    assert results["same"] == ("/tmp/src-same", False)
    assert results["skip"] == (None, False)
    assert results["other"] == ("/tmp/out", True)
    assert sorted(info.rel_path for info in status.done) == ["other", "same", "skip"]


def test_progress_each_reports_multiples_and_final():
    workflow, _, _, _ = create_test_workflow([f"f{i}" for i in range(5)])
    tracker = ProgressTracker()
    workflow.process_files(ProcessingOptions(process_func=passthrough, concurrency=1,
                                             progress_each=2, progress_callback=tracker))
    assert tracker.calls == [(2, 5), (4, 5), (5, 5)]


def test_process_files_rejects_zero_concurrency():
    workflow, _, _, _ = create_test_workflow(["a"])
    with pytest.raises(ValueError):
        workflow.process_files(ProcessingOptions(process_func=passthrough, concurrency=0))


def test_set_logger_propagates_to_components():
    workflow, fs, status, backlog = create_test_workflow()
    logger = logging.getLogger("uobf-test")
    workflow.set_logger(logger)
    assert len(fs.loggers) == 1
    assert len(status.loggers) == 1
    assert len(backlog.loggers) == 1
    assert fs.loggers[0].extra == {"component": "filesystem"}
    assert status.loggers[0].extra == {"component": "status_memory"}
    assert backlog.loggers[0].extra == {"component": "backlog_manager"}
    assert fs.loggers[0].logger is logger