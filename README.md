# wingsd

`wingsd` manages the data directory of a hosted server process. It keeps
every file operation inside a single root directory, enforces a disk quota,
builds and extracts archives, and creates backups that are either kept on
local disk or uploaded to S3 through presigned URLs.

## Installing

```
pip install .
pip install ".[test]"   # with pytest and responses for the test suite
```

## What it provides

- **`wingsd.filesystem.filesystem.Filesystem`** – the sandboxed view of a
  server's data directory. Paths handed to it are cleaned and resolved
  (symlinks included) and rejected with a `FilesystemError` when they point
  outside the root. It offers `file`, `stat`, `touch`, `writefile`,
  `create_directory`, `rename`, `chown`, `chmod`, `chtimes`, `copy`, `delete`,
  `list_directory` and `truncate_root_directory`. `copy` places the copy next
  to the original as `name copy.ext`, then `name copy 1.ext` and so on.
  `delete` removes symlinks themselves, never their targets. Disk usage is
  tracked by its `disk` attribute (a `DiskUsage`) and checked through
  `has_space_for` and `has_space_available`. A denylist of gitignore-style
  patterns blocks chosen files (`is_ignored`).
- **`wingsd.filesystem.paths.PathResolver`** – the path confinement on its
  own: `safe_path`, `unsafe_file_path`, `is_in_data_directory` and
  `parallel_safe_path`.
- **`wingsd.filesystem.disk_space.DiskUsage`** – caches the size of the data
  directory for `check_interval` seconds (0 disables lookups) and compares it
  with a byte limit (0 means unlimited).
- **`wingsd.filesystem.errors`** – `FilesystemError` carries an `ErrorCode`
  (`PATH_RESOLUTION`, `DISK_SPACE`, `IS_DIRECTORY`, `DENYLIST_FILE`,
  `UNKNOWN_ARCHIVE`, `NOT_EXIST`, `UNKNOWN_ERROR`); `is_error_code(err, code)`
  and `is_filesystem_error(err)` look through the exception's cause chain.
- **`wingsd.filesystem.gitignore.GitIgnore`** – matches paths against
  gitignore-style lines, including `**` and `!` negation.
- **`wingsd.filesystem.stat.Stat`** – file information with a MIME type
  guessed from the leading bytes (`detect_mimetype`); `to_dict()` gives the
  JSON form with `name`, `created`, `modified`, `mode`, `mode_bits`, `size`,
  `directory`, `file`, `symlink` and `mime`.
- **`wingsd.filesystem.archive.Archive`** – writes a `.tar.gz` of a
  directory, either of every file not matched by an `ignore` text or of an
  explicit list of absolute `files`, at a chosen `CompressionLevel`, with an
  optional `progress` callback and a `write_limit` in MiB per second.
- **`wingsd.filesystem.compress`** – `compress_files` builds an
  `archive-<date>.tar.gz` inside a directory of the sandbox;
  `decompress_file`, `decompress_file_unsafe` and `extract_stream_unsafe`
  extract zip and tar archives (plain or gzip, bzip2 or xz compressed) into
  the sandbox, skipping denylisted entries; `space_available_for_decompression`
  raises a disk space error when the archive would not fit.
- **`wingsd.backup.base.LocalBackup`** and **`wingsd.backup.s3.S3Backup`** –
  `generate` archives a directory and returns `ArchiveDetails` (SHA-1
  checksum and size); `restore` calls `callback(name, tarinfo, fileobj)` for
  each archive entry. `locate_local` finds an existing local backup.
  `S3Backup` uploads the archive part by part with `S3FileUploader`, retrying
  5xx responses and connection errors with exponential backoff, and then
  removes the local file.
- **`wingsd.console.ConsoleThrottle`** – lets at most `lines` console lines
  through per `period` seconds and calls its `strike` callback once each time
  the limit is first hit.
- **`wingsd.server_errors`** – exception classes for server states
  (`ServerIsRunningError`, `ServerSuspendedError`, `CrashTooFrequentError`
  and others) and the installer's `ValidationError`.

## Example

```python
from wingsd.filesystem.errors import FilesystemError, ErrorCode, is_error_code
from wingsd.filesystem.filesystem import Filesystem

fs = Filesystem(
    root="/srv/daemon-data/6b1f0c2e",
    disk_limit=512 * 1024 * 1024,
    denylist=["*.secret"],
    disk_check_interval=150,
    manage_ownership=False,
)

fs.create_directory("plugins", "/")
fs.writefile("plugins/readme.txt", b"hello, world!\n")

try:
    fs.safe_path("../outside.txt")
except FilesystemError as err:
    assert is_error_code(err, ErrorCode.PATH_RESOLUTION)
```

Every path is interpreted relative to the root, so `"/plugins"`,
`"plugins"` and `"./plugins/"` all name the same directory, while anything
that climbs out of the root, directly or through a symlink, raises a
`FilesystemError`.

An S3 backup needs a function that supplies the upload targets:

```python
from wingsd.backup.s3 import S3Backup

def upload_urls(uuid, size):
    return {"parts": ["https://bucket.example.com/part-1"], "part_size": size}

backup = S3Backup("1b9d6bcd-bbfd-4b2d-9b5d-ab8dfbbd4bed", "", "/var/lib/backups",
                  get_upload_urls=upload_urls)
details = backup.generate("/srv/daemon-data/6b1f0c2e", "")
```

## What it does not do

This is a library only. It has no command, runs no daemon, serves no HTTP or
websocket API, starts or manages no containers, and does not talk to a
control panel: reporting backup or install results, and obtaining presigned
S3 URLs, are left to the caller. RAR and 7z archives are not extracted.