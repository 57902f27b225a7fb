"""Concurrent upload of a local directory into a bucket prefix."""

from __future__ import annotations

import mimetypes
import queue
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from pathlib import Path

from fleet_deploy.core.config import Settings, settings as default_settings
from fleet_deploy.core.exceptions import StaticsUploadCancelled, StorageError
from fleet_deploy.core.logging import get_logger
from fleet_deploy.services.storage.s3_client import BucketStorage, normalize_prefix

logger = get_logger(__name__)

SNIFF_LENGTH = 512
DEFAULT_CONTENT_TYPE = "application/octet-stream"

_HTML_TAGS = (
    b"<!DOCTYPE HTML", b"<HTML", b"<HEAD", b"<SCRIPT", b"<IFRAME", b"<H1", b"<DIV", b"<FONT",
    b"<TABLE", b"<A", b"<STYLE", b"<TITLE", b"<B", b"<BODY", b"<BR", b"<P", b"<!--",
)
_SIGNATURES = (
    (b"%PDF-", "application/pdf"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"PK\x03\x04", "application/zip"),
    (b"\x1f\x8b\x08", "application/x-gzip"),
    (b"\x00asm", "application/wasm"),
    (b"wOFF", "font/woff"),
    (b"wOF2", "font/woff2"),
)
_BINARY_BYTES = frozenset([*range(0x00, 0x09), 0x0B, *range(0x0E, 0x1B), *range(0x1C, 0x20)])


def sniff_content_type(head: bytes) -> str:
    """Guess a content type from the first bytes of a file."""
    stripped = head.lstrip(b"\t\n\x0c\r ")
    upper = stripped[:16].upper()
    for tag in _HTML_TAGS:
        if upper.startswith(tag) and len(stripped) > len(tag) and stripped[len(tag)] in b" >":
            return "text/html; charset=utf-8"
    if stripped.startswith(b"<?xml"):
        return "text/xml; charset=utf-8"
    for signature, content_type in _SIGNATURES:
        if head.startswith(signature):
            return content_type
    if head.startswith(b"RIFF") and head[8:12] == b"WEBP":
        return "image/webp"
    if any(byte in _BINARY_BYTES for byte in head):
        return DEFAULT_CONTENT_TYPE
    return "text/plain; charset=utf-8"


def detect_content_type(path: Path, handle) -> str:
    """Content type by extension, falling back to sniffing ``handle``.

    Sniffing reads at most 512 bytes and rewinds the handle.
    """
    guessed, _ = mimetypes.guess_type(path.name)
    if guessed:
        return guessed
    head = handle.read(SNIFF_LENGTH)
    handle.seek(0)
    return sniff_content_type(head)


def list_files(local_root: Path) -> list[str]:
    """Relative POSIX paths of every regular file under ``local_root``."""
    return sorted(path.relative_to(local_root).as_posix() for path in local_root.rglob("*") if path.is_file())


class _FirstError:
    """Single-assignment error cell shared by the upload workers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.error: BaseException | None = None

    def set(self, error: BaseException) -> bool:
        with self._lock:
            if self.error is not None:
                return False
            self.error = error
            return True


class AssetSynchronizer:
    """Replaces the contents of a bucket prefix with a local directory tree."""

    def __init__(self, storage: BucketStorage, workers: int | None = None, settings: Settings | None = None):
        self.storage = storage
        settings = settings or default_settings
        self.workers = workers or settings.statics_upload_workers

    def upload_directory(
        self,
        destination_prefix: str,
        local_root: Path | str,
        cancel: threading.Event | None = None,
    ) -> int:
        """Upload every file under ``local_root`` to ``destination_prefix``.

        Existing objects under the prefix are deleted first, so the prefix ends
        up holding exactly the local tree.

        Returns:
            Number of files uploaded

        Raises:
            Exception: The first error raised by any upload worker
            StorageError: If ``local_root`` is not a directory
            StaticsUploadCancelled: If ``cancel`` is set before the upload finishes
        """
        local_root = Path(local_root)
        destination_prefix = normalize_prefix(destination_prefix)
        if not local_root.is_dir():
            raise StorageError(
                f"static directory {local_root} does not exist or is not a directory",
                error_code="missing_source_directory",
                details={"path": str(local_root), "prefix": destination_prefix},
            )

        removed = self.storage.delete_directory(destination_prefix)
        if removed:
            logger.info("statics.prefix_cleared", bucket=self.storage.bucket, prefix=destination_prefix, removed=removed)

        files = list_files(local_root)
        work: queue.Queue[str] = queue.Queue(maxsize=len(files) + 1)
        for name in files:
            work.put_nowait(name)

        stop = threading.Event()
        first_error = _FirstError()
        uploaded = [0] * self.workers

        def stopped() -> bool:
            return stop.is_set() or (cancel is not None and cancel.is_set())

        def worker(slot: int) -> None:
            while not stopped():
                try:
                    name = work.get_nowait()
                except queue.Empty:
                    return
                try:
                    self._upload_file(local_root, destination_prefix, name)
                except Exception as exc:
                    if first_error.set(exc):
                        logger.debug("statics.upload_worker_failed", file=name, error=str(exc))
                    stop.set()
                    return
                uploaded[slot] += 1

        logger.info(
            "statics.upload_start",
            bucket=self.storage.bucket,
            prefix=destination_prefix,
            file_count=len(files),
            workers=self.workers,
        )
        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="statics-upload") as pool:
            wait([pool.submit(worker, slot) for slot in range(self.workers)])

        if first_error.error is not None:
            raise first_error.error
        if cancel is not None and cancel.is_set() and sum(uploaded) < len(files):
            raise StaticsUploadCancelled(
                "statics upload cancelled",
                details={"prefix": destination_prefix, "uploaded": sum(uploaded), "total": len(files)},
            )

        logger.info("statics.upload_complete", bucket=self.storage.bucket, prefix=destination_prefix, file_count=sum(uploaded))
        return sum(uploaded)

    def _upload_file(self, local_root: Path, destination_prefix: str, name: str) -> None:
        path = local_root / name
        key = destination_prefix + name.replace("\\", "/")
        with path.open("rb") as handle:
            content_type = detect_content_type(path, handle)
            logger.debug("statics.upload_file", key=key, content_type=content_type)
            self.storage.put_object(key, handle, content_type)
