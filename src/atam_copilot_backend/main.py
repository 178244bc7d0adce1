from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse

from . import __version__
from .configuration import load_settings
from .copilot import CopilotService
from .errors import (
    ConfigurationError,
    CopilotError,
    GenerationTimeout,
    InvalidArgument,
    ProviderError,
    TemplateNotFound,
    UploadTimeout,
)
from .file_upload import RawUpload
from .models import ExtractRequest, HealthStatus, ModelInfo, UploadedFileRef, UtilityTreeRequest

logger = logging.getLogger(__name__)

APPLICATION_NAME = "ATAM Copilot"
READ_CHUNK_BYTES = 8 * 1024 * 1024

_copilot: Optional[CopilotService] = None


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    yield
    if _copilot is not None:
        _copilot.shutdown()


app = FastAPI(title="ATAM Copilot API", version=__version__, lifespan=lifespan)

allowed_origins = ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_copilot() -> CopilotService:
    global _copilot
    if _copilot is None:
        settings = load_settings()
        logging.getLogger("atam_copilot_backend").setLevel(settings.log_level)
        _copilot = CopilotService.from_settings(settings)
    return _copilot


_STATUS_BY_ERROR = [
    (InvalidArgument, 400),
    (UploadTimeout, 504),
    (GenerationTimeout, 504),
    (ProviderError, 502),
    (TemplateNotFound, 500),
    (ConfigurationError, 500),
]


def status_for(exc: CopilotError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


@app.exception_handler(CopilotError)
async def copilot_error_handler(_request: Request, exc: CopilotError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("Request failed: %s", exc, exc_info=exc.__cause__ or exc)
    else:
        logger.warning("Invalid request: %s", exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def sse_event(data: str, event: Optional[str] = None) -> str:
    lines = [f"event: {event}"] if event else []
    lines.extend(f"data: {line}" for line in data.split("\n"))
    return "\n".join(lines) + "\n\n"


async def _event_stream(fragments: AsyncIterator[str]) -> AsyncIterator[str]:
    try:
        async for fragment in fragments:
            yield sse_event(fragment)
    except CopilotError as exc:
        # Headers are already sent; the error becomes the last event.
        logger.error("Stream failed: %s", exc)
        yield sse_event(str(exc), event="error")
    finally:
        # Stops the provider worker when the client disconnects mid-stream.
        aclose = getattr(fragments, "aclose", None)
        if aclose is not None:
            await aclose()


def _stream_response(fragments: AsyncIterator[str]) -> StreamingResponse:
    return StreamingResponse(
        _event_stream(fragments),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.get("/healthz")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/v1/health", response_model=HealthStatus)
def health() -> HealthStatus:
    return HealthStatus(
        status="UP",
        application=APPLICATION_NAME,
        version=__version__,
        timestamp=datetime.now(timezone.utc),
        message="Application is running successfully",
    )


@app.get("/api/v1/model", response_model=ModelInfo)
def model_info(copilot: CopilotService = Depends(get_copilot)) -> ModelInfo:
    return copilot.model_info()


async def _read_upload(file: UploadFile, limit: int) -> RawUpload:
    """Read at most limit + 1 bytes so oversize files fail validation without buffering them whole."""
    chunks: List[bytes] = []
    total = 0
    while total <= limit and (chunk := await file.read(READ_CHUNK_BYTES)):
        chunks.append(chunk)
        total += len(chunk)
    await file.close()
    return RawUpload(filename=file.filename or "document.pdf", content_type=file.content_type, data=b"".join(chunks)[: limit + 1])


@app.post("/api/v1/files/upload", response_model=List[UploadedFileRef])
async def upload_files(
    files: List[UploadFile] = File(...),
    copilot: CopilotService = Depends(get_copilot),
) -> List[UploadedFileRef]:
    copilot.check_file_count(len(files))
    uploads = [await _read_upload(file, copilot.uploader.max_file_size_bytes) for file in files]
    return await run_in_threadpool(copilot.upload_files, uploads)


@app.post("/api/v1/business-drivers/extract", response_class=PlainTextResponse)
def extract_business_drivers(request: ExtractRequest, copilot: CopilotService = Depends(get_copilot)) -> PlainTextResponse:
    logger.info("Received sync extraction request with %d file URIs", len(request.file_uris))
    return PlainTextResponse(copilot.extract(request.file_uris), media_type="text/markdown; charset=utf-8")


@app.post("/api/v1/business-drivers/extract/stream")
async def extract_business_drivers_stream(request: ExtractRequest, copilot: CopilotService = Depends(get_copilot)) -> StreamingResponse:
    logger.info("Received stream extraction request with %d file URIs", len(request.file_uris))
    return _stream_response(copilot.extract(request.file_uris, streaming=True))


@app.post("/api/v1/business-drivers/utility-tree/generate", response_class=PlainTextResponse)
def generate_utility_tree(request: UtilityTreeRequest, copilot: CopilotService = Depends(get_copilot)) -> PlainTextResponse:
    logger.info("Received sync utility tree request (%d characters)", len(request.business_drivers_markdown))
    return PlainTextResponse(copilot.generate_derivative(request.business_drivers_markdown), media_type="text/markdown; charset=utf-8")


@app.post("/api/v1/business-drivers/utility-tree/generate/stream")
async def generate_utility_tree_stream(request: UtilityTreeRequest, copilot: CopilotService = Depends(get_copilot)) -> StreamingResponse:
    logger.info("Received stream utility tree request (%d characters)", len(request.business_drivers_markdown))
    return _stream_response(copilot.generate_derivative(request.business_drivers_markdown, streaming=True))


@app.post("/api/v1/architecture/analyze", response_class=PlainTextResponse)
def analyze_architecture(request: ExtractRequest, copilot: CopilotService = Depends(get_copilot)) -> PlainTextResponse:
    logger.info("Received sync architecture analysis request with %d file URIs", len(request.file_uris))
    return PlainTextResponse(copilot.analyze(request.file_uris), media_type="text/markdown; charset=utf-8")


@app.post("/api/v1/architecture/analyze/stream")
async def analyze_architecture_stream(request: ExtractRequest, copilot: CopilotService = Depends(get_copilot)) -> StreamingResponse:
    logger.info("Received stream architecture analysis request with %d file URIs", len(request.file_uris))
    return _stream_response(copilot.analyze(request.file_uris, streaming=True))
