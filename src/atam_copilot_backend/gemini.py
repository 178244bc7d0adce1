"""
Google Gemini adapters: client construction, the Files API, and generation.

All google-genai details are confined here. The rest of the backend only sees
UploadedFileRef values, plain strings, and async iterators of strings.

Streaming bridge:
    The SDK's ``generate_content_stream`` is a blocking iterator. It is
    consumed on a dedicated thread per stream that publishes every text part
    into an unbounded asyncio.Queue owned by the caller's event loop. The
    thread stops between chunks once the consumer closes or abandons the async
    iterator. Synchronous calls run on a separate bounded pool.
"""

from __future__ import annotations

import asyncio
import logging
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Iterator, List, Optional, Sequence

from google import genai
from google.genai import types

from .configuration import GenAISettings
from .errors import GenerationTimeout, InvalidArgument, ProviderError
from .models import PDF_MIME_TYPE, AccessMode, FileState, ModelInfo, UploadedFileRef

logger = logging.getLogger(__name__)

_VERSION_PATTERN = re.compile(r"gemini-(\d+(?:\.\d+)?)")

_CHUNK = "chunk"
_DONE = "done"
_ERROR = "error"


def build_client(settings: GenAISettings) -> genai.Client:
    if settings.access_mode == AccessMode.API_KEY:
        logger.info("Initializing Gemini Developer API client with API key")
        return genai.Client(api_key=settings.api_key)
    logger.info("Initializing Vertex AI client: project=%s, location=%s", settings.project_id, settings.location)
    return genai.Client(vertexai=True, project=settings.project_id, location=settings.location)


def _state_name(state: Any) -> Optional[str]:
    if state is None:
        return None
    return str(getattr(state, "name", None) or getattr(state, "value", None) or state).upper()


def map_file_state(state: Any) -> FileState:
    """Provider lifecycle state to FileState; an absent state counts as active."""
    name = _state_name(state)
    if name is None or name.endswith("ACTIVE"):
        return FileState.ACTIVE
    if name.endswith("FAILED"):
        return FileState.FAILED
    return FileState.PENDING


def file_ref_from_gemini(file: types.File) -> UploadedFileRef:
    return UploadedFileRef(
        id=file.name or "",
        uri=file.uri or "",
        display_name=file.display_name or "",
        size_bytes=int(file.size_bytes or 0),
        mime_type=file.mime_type or PDF_MIME_TYPE,
        state=map_file_state(file.state),
    )


class GeminiFileStore:
    """The Gemini Files API as the provider-side file store."""

    def __init__(self, client: genai.Client) -> None:
        self._client = client

    def upload(
        self,
        path: Path,
        mime_type: str,
        display_name: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> UploadedFileRef:
        uploaded = self._client.files.upload(
            file=str(path),
            config=types.UploadFileConfig(mime_type=mime_type, display_name=display_name),
        )
        ref = file_ref_from_gemini(uploaded)
        if cancel_event is not None and cancel_event.is_set():
            # The caller gave up waiting; drop the orphaned remote copy.
            logger.warning("Upload of %s finished after cancellation, deleting %s", display_name, ref.id)
            self.delete(ref.id)
        return ref

    def delete(self, file_id: str) -> None:
        if not file_id:
            return
        try:
            self._client.files.delete(name=file_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Failed to delete remote file {file_id}: {exc}")


@dataclass
class GenerationRequest:
    """Prompt text plus file references, assembled per call."""

    prompt_text: str
    file_refs: List[UploadedFileRef] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.file_refs = list(self.file_refs)
        if not (self.prompt_text and self.prompt_text.strip()) and not self.file_refs:
            raise InvalidArgument("A generation request needs prompt text or at least one file reference")
        for ref in self.file_refs:
            if not ref.uri or not ref.uri.strip():
                raise InvalidArgument("File URI is missing")


def build_contents(request: GenerationRequest) -> types.Content:
    """
    File parts first, instruction text last.

    Both the synchronous and the streaming paths send exactly this content.
    """
    parts: List[types.Part] = [
        types.Part.from_uri(file_uri=ref.uri, mime_type=ref.mime_type or PDF_MIME_TYPE) for ref in request.file_refs
    ]
    if request.prompt_text:
        parts.append(types.Part.from_text(text=request.prompt_text))
    return types.Content(role="user", parts=parts)


def iter_response_text(response: Any) -> Iterator[str]:
    """Text parts of the first candidate of a (partial) response, in order."""
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return
    content = getattr(candidates[0], "content", None)
    for part in getattr(content, "parts", None) or []:
        text = getattr(part, "text", None)
        if text:
            yield text


def model_version(model_name: str) -> str:
    match = _VERSION_PATTERN.search(model_name)
    if not match:
        return "unknown"
    version = match.group(1)
    return version if "." in version else f"{version}.0"


class GeminiChatService:
    """
    Synchronous and streaming generation against one Gemini model.

    Temperature and output token limit are fixed per instance; the deadline
    defaults to ``timeout_seconds`` and can be overridden per call. It is
    measured from the start of the provider call, not from submission.
    """

    def __init__(
        self,
        client: genai.Client,
        model: str,
        access_mode: AccessMode,
        temperature: float = 0.3,
        max_output_tokens: int = 8192,
        timeout_seconds: Optional[float] = None,
        max_workers: int = 4,
    ) -> None:
        self._client = client
        self.model = model
        self.access_mode = access_mode
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.timeout_seconds = timeout_seconds
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="gemini-chat")

    @classmethod
    def from_settings(cls, client: genai.Client, settings: GenAISettings) -> "GeminiChatService":
        return cls(
            client,
            model=settings.model,
            access_mode=settings.access_mode,
            temperature=settings.temperature,
            max_output_tokens=settings.max_output_tokens,
            timeout_seconds=settings.generation_timeout_seconds,
            max_workers=settings.workers,
        )

    def _config(self) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(temperature=self.temperature, max_output_tokens=self.max_output_tokens)

    def _deadline(self, timeout: Optional[float]) -> Optional[float]:
        return timeout if timeout is not None else self.timeout_seconds

    def model_info(self) -> ModelInfo:
        return ModelInfo(
            model_name=self.model,
            provider="Google",
            access_mode=self.access_mode,
            version=model_version(self.model),
        )

    def generate(
        self,
        prompt_text: str,
        file_refs: Optional[Sequence[UploadedFileRef]] = None,
        timeout: Optional[float] = None,
    ) -> str:
        request = GenerationRequest(prompt_text, list(file_refs or []))
        logger.debug("Sync chat request: prompt length=%d, files=%d", len(prompt_text or ""), len(request.file_refs))

        deadline = self._deadline(timeout)
        started = threading.Event()
        future = self._executor.submit(self._generate_blocking, request, started)
        # The deadline covers the provider call, not time spent queued behind other calls.
        while not started.wait(timeout=0.05):
            if future.done():
                break
        try:
            result = future.result(timeout=deadline)
        except FutureTimeout as exc:
            future.cancel()
            raise GenerationTimeout(f"Generation timed out after {deadline} seconds") from exc

        logger.debug("Sync chat completed: response length=%d", len(result))
        return result

    def _generate_blocking(self, request: GenerationRequest, started: threading.Event) -> str:
        started.set()
        try:
            response = self._client.models.generate_content(
                model=self.model,
                contents=build_contents(request),
                config=self._config(),
            )
        except Exception as exc:
            logger.error("Failed to execute sync chat: %s", exc)
            raise ProviderError("Failed to execute sync chat") from exc

        text = getattr(response, "text", None)
        if text is None:
            raise ProviderError("Gemini returned no text for the request")
        return text

    def generate_stream(
        self,
        prompt_text: str,
        file_refs: Optional[Sequence[UploadedFileRef]] = None,
        timeout: Optional[float] = None,
    ) -> AsyncIterator[str]:
        """
        Stream text fragments in provider emission order.

        The request is validated here, before the returned iterator is first
        awaited. The sequence is finite and not restartable; iterating again
        requires a new call, which re-invokes the model.
        """
        request = GenerationRequest(prompt_text, list(file_refs or []))
        logger.debug("Stream chat request: prompt length=%d, files=%d", len(prompt_text or ""), len(request.file_refs))
        return self._stream(request, self._deadline(timeout))

    async def _stream(self, request: GenerationRequest, deadline: Optional[float]) -> AsyncIterator[str]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        stop = threading.Event()
        # One thread per stream; an open stream never holds a sync worker.
        worker = threading.Thread(
            target=self._pump,
            args=(request, queue, loop, stop),
            name="gemini-stream",
            daemon=True,
        )
        worker.start()

        expires_at = loop.time() + deadline if deadline is not None else None
        try:
            while True:
                remaining = None if expires_at is None else max(expires_at - loop.time(), 0)
                try:
                    kind, payload = await asyncio.wait_for(queue.get(), remaining)
                except asyncio.TimeoutError as exc:
                    raise GenerationTimeout(f"Stream generation timed out after {deadline} seconds") from exc

                if kind == _CHUNK:
                    yield payload
                elif kind == _DONE:
                    logger.debug("Stream chat completed")
                    return
                else:
                    raise ProviderError("Stream generation failed") from payload
        finally:
            stop.set()

    def _pump(
        self,
        request: GenerationRequest,
        queue: asyncio.Queue,
        loop: asyncio.AbstractEventLoop,
        stop: threading.Event,
    ) -> None:
        def publish(kind: str, payload: Any = None) -> None:
            if stop.is_set():
                return
            try:
                loop.call_soon_threadsafe(queue.put_nowait, (kind, payload))
            except RuntimeError:
                # Event loop already closed; nobody is listening any more.
                stop.set()

        stream = None
        try:
            stream = self._client.models.generate_content_stream(
                model=self.model,
                contents=build_contents(request),
                config=self._config(),
            )
            for response in stream:
                if stop.is_set():
                    logger.debug("Stream consumer went away, stopping")
                    break
                for text in iter_response_text(response):
                    publish(_CHUNK, text)
            publish(_DONE)
        except Exception as exc:
            logger.error("Stream chat error: %s", exc)
            publish(_ERROR, exc)
        finally:
            close = getattr(stream, "close", None)
            if stop.is_set() and callable(close):
                close()

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
