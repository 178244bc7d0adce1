"""
ATAM agents: upload (when needed), load the prompt, call Gemini.

Each agent operation takes a DocumentSource:

- FileUris: documents already uploaded through the Files API. The caller
  owns their lifecycle, nothing is cleaned up locally.
- LocalFiles: PDFs on local disk (typically temp files). They are uploaded
  first and deleted afterwards on every exit path.

Every operation runs either synchronously (returns the full markdown) or as a
stream (returns an async iterator of markdown fragments). Input validation and
template loading happen before a stream is returned, so those errors never
arrive mid-stream.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, List, Optional, Sequence, Union

from .errors import InvalidArgument
from .file_upload import PdfUploader
from .gemini import GeminiChatService
from .models import BUSINESS_OBJECTIVE_MARKERS, UploadedFileRef
from .prompts import ARCHITECTURE_ANALYSIS, BUSINESS_DRIVER_EXTRACTION, UTILITY_TREE_GENERATION, PromptLibrary

logger = logging.getLogger(__name__)

APPROVED_DRIVERS_HEADING = "Approved Business Drivers"

GenerationResult = Union[str, AsyncIterator[str]]


@dataclass(frozen=True)
class FileUris:
    uris: Sequence[str]


@dataclass(frozen=True)
class LocalFiles:
    paths: Sequence[Union[Path, str]]


DocumentSource = Union[FileUris, LocalFiles]


class DocumentAgent:
    def __init__(self, chat: GeminiChatService, uploader: PdfUploader, prompts: PromptLibrary) -> None:
        self.chat = chat
        self.uploader = uploader
        self.prompts = prompts

    @staticmethod
    def _validate(source: DocumentSource) -> None:
        if isinstance(source, FileUris):
            if not source.uris:
                raise InvalidArgument("No file URIs provided")
            for uri in source.uris:
                if not uri or not uri.strip():
                    raise InvalidArgument("fileUri cannot be null or blank")
            return

        if not source.paths:
            raise InvalidArgument("No PDF files provided")
        for raw_path in source.paths:
            path = Path(raw_path)
            if not path.exists():
                raise InvalidArgument(f"File not found: {path}")
            if path.stat().st_size == 0:
                raise InvalidArgument(f"Empty file not allowed: {path.name}")

    def _resolve(self, source: DocumentSource) -> List[UploadedFileRef]:
        if isinstance(source, FileUris):
            return [UploadedFileRef.from_uri(uri) for uri in source.uris]
        refs = self.uploader.upload(source.paths)
        logger.info("Uploaded %d files to Gemini Files API", len(refs))
        return refs

    def _cleanup(self, source: DocumentSource) -> None:
        if isinstance(source, LocalFiles):
            self.uploader.cleanup(source.paths)

    def _run(
        self,
        template_name: str,
        source: DocumentSource,
        streaming: bool,
        timeout: Optional[float],
    ) -> GenerationResult:
        try:
            self._validate(source)
            prompt_text = self.prompts.load(template_name)
        except Exception:
            self._cleanup(source)
            raise

        if streaming:
            fragments = self._run_stream(template_name, prompt_text, source, timeout)
            if isinstance(source, LocalFiles):
                # A stream dropped before its first iteration never reaches its finally block.
                weakref.finalize(fragments, self._cleanup, source)
            return fragments

        try:
            refs = self._resolve(source)
            result = self.chat.generate(prompt_text, refs, timeout=timeout)
        except Exception:
            logger.error("%s failed", template_name)
            raise
        finally:
            self._cleanup(source)

        logger.info("%s completed: %d characters", template_name, len(result))
        return result

    async def _run_stream(
        self,
        template_name: str,
        prompt_text: str,
        source: DocumentSource,
        timeout: Optional[float],
    ) -> AsyncIterator[str]:
        try:
            refs = await asyncio.to_thread(self._resolve, source)
            async for fragment in self.chat.generate_stream(prompt_text, refs, timeout=timeout):
                yield fragment
            logger.info("%s stream completed", template_name)
        except Exception:
            logger.error("%s stream failed", template_name)
            raise
        finally:
            self._cleanup(source)


class BusinessDriverAgent(DocumentAgent):
    """ATAM step 2 (business drivers) and step 5 (utility tree draft)."""

    def extract(self, source: DocumentSource, streaming: bool = False, timeout: Optional[float] = None) -> GenerationResult:
        logger.info("Starting business driver extraction (streaming=%s)", streaming)
        return self._run(BUSINESS_DRIVER_EXTRACTION, source, streaming, timeout)

    def generate_utility_tree(
        self,
        business_drivers_markdown: str,
        streaming: bool = False,
        timeout: Optional[float] = None,
    ) -> GenerationResult:
        """Text-only call: template plus the approved business drivers, no files."""
        if not business_drivers_markdown or not business_drivers_markdown.strip():
            raise InvalidArgument("business_drivers_markdown cannot be blank")
        if not any(marker in business_drivers_markdown for marker in BUSINESS_OBJECTIVE_MARKERS):
            raise InvalidArgument("business_drivers_markdown must contain a business objectives section")

        logger.info("Starting utility tree generation (streaming=%s)", streaming)
        prompt_text = self.prompts.assemble(UTILITY_TREE_GENERATION, business_drivers_markdown, APPROVED_DRIVERS_HEADING)
        if streaming:
            return self.chat.generate_stream(prompt_text, timeout=timeout)
        return self.chat.generate(prompt_text, timeout=timeout)


class ArchitectureDesignAgent(DocumentAgent):
    """Architecture patterns, smells, and tradeoffs from design documents."""

    def analyze(self, source: DocumentSource, streaming: bool = False, timeout: Optional[float] = None) -> GenerationResult:
        logger.info("Starting architecture analysis (streaming=%s)", streaming)
        return self._run(ARCHITECTURE_ANALYSIS, source, streaming, timeout)
