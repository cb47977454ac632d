# uobf

A small library for batch-processing files in place, in two phases:

1. **Scan and filter**: walk a filesystem, ask a status memory which files
   still need work, and write their relative paths to a backlog.
2. **Process**: read the backlog and, with several worker threads, let the
   filesystem download each file, run your processing function on it and
   upload the result over the original. Successes and failures are
   recorded, so the next run picks up only what changed or failed.

The package uses only the Python standard library (Python 3.10 or later).

```
pip install .
```

## Building blocks

`uobf.types`

- `FileInfo` (frozen dataclass): `name`, `size`, `mode`, `mod_time`,
  `is_dir`, `rel_path`, `abs_path`.
- `WalkOptions`: `include`, `exclude`, `follow_symlinks`, `max_depth`
  (`-1` for unlimited), `files_only`. These are handed to the filesystem's
  `walk`; interpreting them is up to the filesystem.
- `ScanAndFilterOptions`: `walk_options`, `batch_size`, `estimated_total`,
  `progress_each`, `progress_callback`.
- `ProcessingOptions`: `process_func` (required), `concurrency` (default 1),
  `retry_count`, `retry_delay` (seconds), `progress_each`,
  `progress_callback(processed, total)`.
- Abstract interfaces a workflow is built from:
  - `FileSystem`: `walk(options)` yields `FileInfo`s;
    `overwrite(rel_path, callback)` calls
    `callback(file_info, local_path)`, which returns
    `(path_to_upload or None, auto_remove)`, and returns the updated
    `FileInfo`; plus `close()`, `set_logger(logger)`, `get_url()`.
  - `StatusMemory`: `needs_processing(entries)`, `report_done(file_info)`,
    `report_error(file_info, error)`, `set_logger(logger)`.
  - `BacklogManager`: `start_writing(rel_paths)`, `start_reading()`,
    `count_rel_paths()`, `set_logger(logger)`.

`uobf.workflow.OverwriteWorkflow(fs, status_memory, backlog_manager)`

- `scan_and_filter(options)` feeds the walked entries through
  `status_memory.needs_processing` and writes the relative paths of those
  that remain with `backlog_manager.start_writing`. An error raised by the
  walk is re-raised after the backlog has been written with what was found.
- `process_files(options)` counts and reads the backlog, then processes the
  entries with `options.concurrency` threads and returns the number of
  files processed successfully. `process_func(local_path)` returns the path
  to upload, or `None`/`""` to skip the upload; when the returned path
  differs from the local path, the callback asks the filesystem to remove it
  after upload. Each `overwrite` is retried up to `retry_count` times with
  `retry_delay` seconds between attempts. Failures of single files are
  logged and reported to the status memory and do not stop the run. The
  progress callback is called every `progress_each` successes and once at
  the end. A `concurrency` below 1 raises `ValueError`.
- `set_logger(logger)` sets the workflow's logger and hands each component a
  `logging.LoggerAdapter` tagged with `component` (`filesystem`,
  `status_memory`, `backlog_manager`).

Status memories

- `uobf.status.memory.MemoryStatusMemory` keeps statuses in a dictionary.
- `uobf.status.persistent.PersistentStatusMemory(db_path)` keeps them as
  JSON records in an SQLite file, creating the parent directory if needed,
  so status survives between runs. It is a context manager and `close()`
  may be called more than once. Failures to open, store, clear, or use a
  closed store raise `StatusStoreError`.

Both offer `get_status(rel_path)` (a `FileStatus` or `None`),
`get_all_status()`, `clear()` and `count()`. A `FileStatus` holds
`rel_path`, `size`, `mod_time`, `processed`, `last_error` and
`processed_at`, and converts with `to_dict()` / `FileStatus.from_dict()`.

A file needs processing when no status is stored for its relative path,
when its size or modification time differs from the stored one, or when its
last attempt was not successful.

## Example

```python
from uobf.types import ProcessingOptions, ScanAndFilterOptions, WalkOptions
from uobf.workflow import OverwriteWorkflow
from uobf.status.persistent import PersistentStatusMemory


def to_upper(local_path):
    with open(local_path, encoding="utf-8") as f:
        text = f.read()
    with open(local_path, "w", encoding="utf-8") as f:
        f.write(text.upper())
    return local_path  # return None to skip uploading this file


with PersistentStatusMemory("/var/lib/myjob/status.db") as status:
    # my_filesystem and my_backlog are your FileSystem and BacklogManager
    workflow = OverwriteWorkflow(my_filesystem, status, my_backlog)

    workflow.scan_and_filter(
        ScanAndFilterOptions(
            walk_options=WalkOptions(include=("*.txt",), files_only=True),
        )
    )
    done = workflow.process_files(
        ProcessingOptions(
            process_func=to_upper,
            concurrency=4,
            retry_count=3,
            retry_delay=0.1,
            progress_each=10,
            progress_callback=lambda n, total: print(f"{n}/{total}"),
        )
    )
```

## Logging

`set_logger` takes a standard `logging.Logger` or `logging.LoggerAdapter`.
By default each part logs to a logger named after its module.

## What the package does not do

It ships no concrete `FileSystem` or `BacklogManager`: there is no local,
FTP, SFTP, S3 or WebDAV filesystem and no backlog file format. You supply
implementations of these interfaces. There is also no command-line tool.

## Tests

```
pip install ".[test]"
pytest
```