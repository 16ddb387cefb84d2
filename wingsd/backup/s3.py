"""Backups that are uploaded to S3 through presigned multipart URLs."""

from __future__ import annotations

import contextlib
import logging
from typing import Any, BinaryIO, Callable, Dict, List, Mapping, Optional

import backoff
import requests

from .base import ArchiveDetails, Backup, AdapterType, RestoreCallback

log = logging.getLogger(__name__)

# Generous enough to push a 5GB part over a slow link.
_UPLOAD_TIMEOUT = 2 * 60 * 60

UploadUrlsGetter = Callable[[str, int], Mapping[str, Any]]


class _Retry(Exception):
    """Carries an error that a further attempt may fix."""

    def __init__(self, error: BaseException) -> None:
        super().__init__(str(error))
        self.error = error


class _PartReader:
    """Reads at most ``size`` bytes of a file starting at ``offset``."""

    def __init__(self, fileobj: BinaryIO, offset: int, size: int) -> None:
        self._fileobj = fileobj
        self._offset = offset
        self._size = size
        self._remaining = size

    def _seekable(self) -> bool:
        seekable = getattr(self._fileobj, "seekable", None)
        return bool(seekable is not None and seekable())

    def rewind(self) -> None:
        if self._seekable():
            self._fileobj.seek(self._offset)
        self._remaining = self._size

    def __len__(self) -> int:
        return self._size

    def read(self, n: Optional[int] = -1) -> bytes:
        if self._remaining <= 0:
            return b""
        if n is None or n < 0 or n > self._remaining:
            n = self._remaining
        data = self._fileobj.read(n)
        self._remaining -= len(data)
        return data


class S3FileUploader:
    """Uploads consecutive parts of a file to presigned URLs.

    Parts that fail with a 5xx status or a connection problem are retried
    with an exponential backoff for up to ``max_elapsed`` seconds.
    """

    initial_interval: float = 0.5
    max_elapsed: float = 60.0
    timeout: float = _UPLOAD_TIMEOUT

    def __init__(self, fileobj: BinaryIO, session: Optional[requests.Session] = None) -> None:
        self.fileobj = fileobj
        self.session = session if session is not None else requests.Session()
        self.uploaded_parts: List[Dict[str, Any]] = []
        self._offset = 0

    def upload_part(self, url: str, size: int) -> str:
        """PUT the next ``size`` bytes of the file to ``url`` and return the ETag."""
        body = _PartReader(self.fileobj, self._offset, size)
        self._offset += size
        headers = {"Content-Length": str(size), "Content-Type": "application/x-gzip"}

        def attempt() -> str:
            body.rewind()
            try:
                res = self.session.put(url, data=body, headers=headers, timeout=self.timeout)
            except requests.RequestException as exc:
                raise _Retry(exc) from exc
            res.close()
            if res.status_code != 200:
                err = requests.HTTPError(
                    f"backup: failed to put S3 object: [HTTP/{res.status_code}] "
                    f"{res.status_code} {res.reason}",
                    response=res,
                )
                # A 4xx response will not improve by trying again.
                if res.status_code >= 500:
                    raise _Retry(err)
                raise err
            return res.headers.get("ETag", "")

        retrying = backoff.on_exception(
            backoff.expo,
            _Retry,
            max_time=self.max_elapsed,
            base=2,
            factor=self.initial_interval,
        )(attempt)
        try:
            return retrying()
        except _Retry as exc:
            raise exc.error from None


class S3Backup(Backup):
    """A backup that is built locally, uploaded to S3, then removed from disk.

    ``get_upload_urls(uuid, size)`` asks the panel for the upload targets and
    returns a mapping with ``parts`` (a list of URLs) and ``part_size``.
    """

    adapter = AdapterType.S3

    def __init__(
        self,
        uuid: str,
        ignore: str,
        backup_directory: str,
        write_limit: float = 0,
        get_upload_urls: Optional[UploadUrlsGetter] = None,
    ) -> None:
        super().__init__(uuid, ignore, backup_directory, write_limit)
        self.get_upload_urls = get_upload_urls
        self.session: Optional[requests.Session] = None

    def generate(self, base_path: str, ignore: str) -> ArchiveDetails:
        """Archive ``base_path``, upload it and return its details."""
        try:
            self._create_archive(base_path, ignore)
            try:
                fh = open(self.path, "rb")
            except OSError as exc:
                raise OSError(f"backup: could not read archive from disk: {exc}") from exc
            with fh:
                parts = self._upload(fh)
            try:
                return self.details(parts)
            except OSError as exc:
                raise OSError(f"backup: failed to get archive details after upload: {exc}") from exc
        finally:
            with contextlib.suppress(OSError):
                self.remove()

    def restore(self, reader: BinaryIO, callback: RestoreCallback) -> None:
        """Call ``callback(name, info, fileobj)`` for every entry in the gzipped tar stream."""
        self._extract(reader, callback)

    def _upload(self, fh: BinaryIO) -> List[Dict[str, Any]]:
        if self.get_upload_urls is None:
            raise ValueError("backup: no source of S3 upload urls configured")
        logger = self._log()
        size = self.size()
        logger.debug("got size of backup (size=%d)", size)

        urls = self.get_upload_urls(self.uuid, size)
        parts: List[str] = list(urls.get("parts") or [])
        part_size = int(urls.get("part_size") or 0)
        logger.info("attempting to upload backup to s3 endpoint (parts=%d)", len(parts))

        uploader = S3FileUploader(fh, self.session)
        for index, url in enumerate(parts):
            if index + 1 < len(parts):
                this_size = part_size
            else:
                # The last part carries whatever remains; it has no minimum size.
                this_size = size - index * part_size
            try:
                etag = uploader.upload_part(url, this_size)
            except Exception:
                logger.warning("failed to upload part (part_id=%d)", index + 1)
                raise
            uploader.uploaded_parts.append({"etag": etag, "part_number": index + 1})
            logger.info("successfully uploaded backup part (part_id=%d)", index + 1)
        logger.info("backup has been successfully uploaded (parts=%d)", len(parts))
        return uploader.uploaded_parts