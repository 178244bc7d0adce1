"""
Boundary operations exposed to the HTTP layer.

CopilotService wires the uploader, prompt library, Gemini chat service, and
agents together, and owns the checks that apply to raw uploads (file count,
empty, oversize, and non-PDF files) before anything touches disk or network.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence

from .agents import ArchitectureDesignAgent, BusinessDriverAgent, FileUris, GenerationResult
from .configuration import Settings
from .errors import InvalidArgument
from .file_upload import FileStore, PdfUploader, RawUpload
from .gemini import GeminiChatService, GeminiFileStore, build_client
from .models import PDF_MIME_TYPE, ModelInfo, UploadedFileRef
from .prompts import PromptLibrary
from .utils import allowed_pdf_extensions, has_pdf_magic

logger = logging.getLogger(__name__)

MAX_FILES_PER_UPLOAD = 5


class CopilotService:
    """
    Central coordinator for document upload and ATAM artifact generation.

    Attributes:
        uploader: Upload adapter for the Gemini Files API
        chat: Model invocation adapter
        business_drivers: Business driver / utility tree agent
        architecture: Architecture analysis agent
        max_files: Upper bound on files per upload call
    """

    def __init__(
        self,
        uploader: PdfUploader,
        chat: GeminiChatService,
        prompts: Optional[PromptLibrary] = None,
        max_files: int = MAX_FILES_PER_UPLOAD,
    ) -> None:
        self.uploader = uploader
        self.chat = chat
        self.prompts = prompts or PromptLibrary()
        self.max_files = max_files
        self.business_drivers = BusinessDriverAgent(chat, uploader, self.prompts)
        self.architecture = ArchitectureDesignAgent(chat, uploader, self.prompts)

    @classmethod
    def from_settings(cls, settings: Settings, file_store: Optional[FileStore] = None) -> "CopilotService":
        client = build_client(settings.genai)
        uploader = PdfUploader.from_settings(file_store or GeminiFileStore(client), settings.upload)
        chat = GeminiChatService.from_settings(client, settings.genai)
        logger.info("Copilot service initialized: model=%s, access_mode=%s", chat.model, chat.access_mode.value)
        return cls(uploader, chat, max_files=settings.upload.max_files)

    def check_file_count(self, count: int) -> None:
        """Reject an upload batch by size alone, before any file body is read."""
        if count == 0:
            raise InvalidArgument("No files provided")
        if count > self.max_files:
            raise InvalidArgument(f"Too many files: {count} (maximum {self.max_files} files allowed)")

    def _check_raw_upload(self, upload: RawUpload) -> None:
        name = upload.filename or "<unnamed>"
        if upload.size == 0:
            raise InvalidArgument(f"Empty file not allowed: {name}")
        if upload.size > self.uploader.max_file_size_bytes:
            raise InvalidArgument(
                f"File size ({upload.size} bytes) exceeds maximum allowed size ({self.uploader.max_file_size_bytes} bytes): {name}"
            )
        declared_pdf = Path(name).suffix.lower() in allowed_pdf_extensions() or (upload.content_type or "") == PDF_MIME_TYPE
        if not declared_pdf or not has_pdf_magic(upload.data):
            raise InvalidArgument(f"Only PDF uploads are supported: {name}")

    def upload_files(self, uploads: Sequence[RawUpload]) -> List[UploadedFileRef]:
        """
        Upload 1..max_files PDFs and return one ref per file, in order.

        The uploads are staged as temp files for the duration of the call and
        removed afterwards whether or not the upload succeeded.
        """
        logger.info("Received file upload request with %d files", len(uploads))
        self.check_file_count(len(uploads))
        for upload in uploads:
            self._check_raw_upload(upload)

        staged = self.uploader.stage(uploads)
        try:
            refs = self.uploader.upload(staged)
        finally:
            self.uploader.cleanup(staged)
            logger.debug("Cleaned up %d temp files", len(staged))
        return refs

    def extract(self, file_uris: Sequence[str], streaming: bool = False, timeout: Optional[float] = None) -> GenerationResult:
        return self.business_drivers.extract(FileUris(list(file_uris)), streaming=streaming, timeout=timeout)

    def generate_derivative(self, prior_stage_text: str, streaming: bool = False, timeout: Optional[float] = None) -> GenerationResult:
        return self.business_drivers.generate_utility_tree(prior_stage_text, streaming=streaming, timeout=timeout)

    def analyze(self, file_uris: Sequence[str], streaming: bool = False, timeout: Optional[float] = None) -> GenerationResult:
        return self.architecture.analyze(FileUris(list(file_uris)), streaming=streaming, timeout=timeout)

    def model_info(self) -> ModelInfo:
        return self.chat.model_info()

    def shutdown(self) -> None:
        self.uploader.shutdown()
        self.chat.shutdown()
