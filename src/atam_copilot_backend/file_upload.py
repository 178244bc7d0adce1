"""
PDF upload to the Gemini Files API.

Uploading is a deterministic step that always precedes prompting: validate
the local file, upload it under a bounded wait, check the returned lifecycle
state, and hand back an UploadedFileRef. The Files API keeps uploads for
about 48 hours, so callers may reuse the refs across several generation
calls within that window.
"""

from __future__ import annotations

import logging
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Protocol, Sequence
from uuid import uuid4

from .configuration import UploadSettings
from .errors import InvalidArgument, ProviderError, UploadTimeout
from .models import PDF_MIME_TYPE, FileState, UploadedFileRef
from .utils import ensure_directory, sanitize_filename, sniff_mime_type

logger = logging.getLogger(__name__)

MAX_FILE_SIZE_BYTES = 50 * 1024 * 1024
UPLOAD_TIMEOUT_SECONDS = 30.0


class FileStore(Protocol):
    def upload(
        self,
        path: Path,
        mime_type: str,
        display_name: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> UploadedFileRef: ...


@dataclass
class RawUpload:
    """An uploaded file as received by the transport layer."""

    filename: str
    content_type: Optional[str]
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


class PdfUploader:
    """
    Validates and uploads local PDFs, one provider call per file.

    Attributes:
        max_file_size_bytes: Per-file ceiling checked before any network call
        timeout_seconds: Bound on each provider upload call
        temp_dir: Where ``stage`` writes files (system temp dir when None)
    """

    def __init__(
        self,
        file_store: FileStore,
        max_file_size_bytes: int = MAX_FILE_SIZE_BYTES,
        timeout_seconds: float = UPLOAD_TIMEOUT_SECONDS,
        temp_dir: Optional[Path] = None,
        max_workers: int = 4,
    ) -> None:
        self._file_store = file_store
        self.max_file_size_bytes = max_file_size_bytes
        self.timeout_seconds = timeout_seconds
        self.temp_dir = temp_dir
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="gemini-upload")

    @classmethod
    def from_settings(cls, file_store: FileStore, settings: UploadSettings) -> "PdfUploader":
        return cls(
            file_store,
            max_file_size_bytes=settings.max_file_size_bytes,
            timeout_seconds=settings.timeout_seconds,
            temp_dir=settings.temp_dir,
            max_workers=settings.workers,
        )

    def validate(self, path: Path) -> int:
        """
        Check a local file before upload and return its size in bytes.

        Raises:
            InvalidArgument: If the file is missing, not a regular file, empty,
                larger than the ceiling, or not a PDF
        """
        if not path.exists():
            raise InvalidArgument(f"File not found: {path}")
        if not path.is_file():
            raise InvalidArgument(f"Not a file: {path}")

        size = path.stat().st_size
        if size == 0:
            raise InvalidArgument(f"Empty file not allowed: {path.name}")
        if size > self.max_file_size_bytes:
            raise InvalidArgument(
                f"File size ({size} bytes) exceeds maximum allowed size ({self.max_file_size_bytes} bytes): {path.name}"
            )

        mime_type = sniff_mime_type(path)
        if mime_type != PDF_MIME_TYPE:
            raise InvalidArgument(f"Unsupported file type: {mime_type}. Only PDF files are supported: {path.name}")

        logger.debug("File validation passed: %s (%d bytes)", path.name, size)
        return size

    def upload(self, paths: Sequence[Path | str]) -> List[UploadedFileRef]:
        """
        Upload files in order, stopping at the first failure.

        Every file is validated before the first provider call, so a bad file
        anywhere in the list never leaves earlier files half-uploaded.
        """
        local_paths = [Path(path) for path in paths]
        if not local_paths:
            raise InvalidArgument("No PDF files provided")

        for path in local_paths:
            self.validate(path)

        logger.info("Uploading %d PDF files to Gemini Files API", len(local_paths))
        refs = [self._upload_one(path) for path in local_paths]
        logger.info("Successfully uploaded %d files", len(refs))
        return refs

    def _upload_one(self, path: Path, display_name: Optional[str] = None) -> UploadedFileRef:
        display_name = display_name or path.name
        cancel_event = threading.Event()
        logger.info("Uploading file to Gemini Files API: %s (%d bytes)", display_name, path.stat().st_size)

        future = self._executor.submit(self._file_store.upload, path, PDF_MIME_TYPE, display_name, cancel_event)
        try:
            ref = future.result(timeout=self.timeout_seconds)
        except FutureTimeout as exc:
            cancel_event.set()
            future.cancel()
            raise UploadTimeout(f"File upload timed out after {self.timeout_seconds:g} seconds: {display_name}") from exc
        except Exception as exc:
            logger.error("Failed to upload file to Gemini Files API: %s", display_name)
            raise ProviderError(f"File upload failed: {display_name}") from exc

        if ref.state == FileState.FAILED:
            raise ProviderError(f"File processing failed: {ref.id or display_name}")
        if not ref.uri or not ref.uri.strip():
            raise ProviderError(f"File upload succeeded but no URI returned: {display_name}")

        logger.info("Successfully uploaded file: %s -> name=%s, uri=%s, state=%s", display_name, ref.id, ref.uri, ref.state.value)
        return ref

    def stage(self, uploads: Iterable[RawUpload]) -> List[Path]:
        """
        Write raw uploads to per-call temp files with unique names.

        Files written before a failure are removed again before re-raising.
        """
        staged: List[Path] = []
        try:
            for upload in uploads:
                staged.append(self._write_temp(upload))
        except Exception:
            self.cleanup(staged)
            raise
        return staged

    def _write_temp(self, upload: RawUpload) -> Path:
        base_dir = ensure_directory(self.temp_dir) if self.temp_dir else Path(tempfile.gettempdir())
        filename = sanitize_filename(upload.filename)
        if Path(filename).suffix.lower() != ".pdf":
            filename = f"{Path(filename).stem or 'document'}.pdf"
        destination = ensure_directory(base_dir / f"atam-upload-{uuid4().hex}") / filename
        destination.write_bytes(upload.data)
        logger.debug("Saved uploaded file: %s -> %s", upload.filename, destination)
        return destination

    def cleanup(self, paths: Iterable[Path | str]) -> None:
        """Best-effort removal of local temp files; failures are only logged."""
        for raw_path in paths:
            path = Path(raw_path)
            try:
                if path.exists():
                    path.unlink()
                    logger.debug("Deleted temp file: %s", path)
                parent = path.parent
                if parent.name.startswith("atam-upload-") and parent.exists() and not any(parent.iterdir()):
                    parent.rmdir()
            except OSError as exc:
                logger.warning(f"Failed to delete temp file {path}: {exc}")

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
