"""
Pytest configuration and fixtures for ATAM Copilot Backend tests.

No test talks to Google: the Files API is replaced by FakeFileStore and the
genai client by FakeGenAIClient, both of which record what they were asked.
"""

import os
import shutil
import tempfile
import threading
from pathlib import Path
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing the app
os.environ["GOOGLE_API_KEY"] = "test-api-key"
os.environ.pop("GOOGLE_CLOUD_PROJECT", None)

from atam_copilot_backend.copilot import CopilotService
from atam_copilot_backend.file_upload import PdfUploader
from atam_copilot_backend.gemini import GeminiChatService
from atam_copilot_backend.main import app, get_copilot
from atam_copilot_backend.models import AccessMode, FileState, UploadedFileRef

# Minimal PDF that is technically valid
PDF_CONTENT = b"""%PDF-1.4
1 0 obj
<< /Type /Catalog /Pages 2 0 R >>
endobj
2 0 obj
<< /Type /Pages /Kids [3 0 R] /Count 1 >>
endobj
3 0 obj
<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] >>
endobj
xref
0 4
0000000000 65535 f
0000000009 00000 n
0000000058 00000 n
0000000115 00000 n
trailer
<< /Size 4 /Root 1 0 R >>
startxref
196
%%EOF"""

GEMINI_FILES_URL = "https://generativelanguage.googleapis.com/v1beta/files"

MARKDOWN_RESULT = "## Business Objectives\n\n| ID | Objective |\n|:---|:---|\n| BO-1 | Faster claims |\n"


class FakeFileStore:
    """Stands in for the Gemini Files API."""

    def __init__(self, state=FileState.ACTIVE, uri_prefix=GEMINI_FILES_URL, error=None):
        self.state = state
        self.uri_prefix = uri_prefix
        self.error = error
        self.calls = []
        self.cancel_events = []
        self.release = threading.Event()
        self.block = False

    @property
    def call_count(self):
        return len(self.calls)

    def upload(self, path, mime_type, display_name, cancel_event=None):
        self.calls.append({"path": Path(path), "mime_type": mime_type, "display_name": display_name})
        self.cancel_events.append(cancel_event)
        if self.block:
            self.release.wait(timeout=5)
        if self.error is not None:
            raise self.error
        file_id = f"files/test{len(self.calls)}"
        return UploadedFileRef(
            id=file_id,
            uri=f"{self.uri_prefix}/test{len(self.calls)}" if self.uri_prefix else "",
            display_name=display_name,
            size_bytes=Path(path).stat().st_size,
            mime_type=mime_type,
            state=self.state,
        )


def text_chunk(*texts):
    """A partial GenerateContentResponse carrying the given text parts."""
    parts = [SimpleNamespace(text=text) for text in texts]
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=parts))])


class FakeModels:
    def __init__(self):
        self.text = MARKDOWN_RESULT
        self.chunks = [text_chunk("## Business "), text_chunk("Objectives\n\n", "| BO-1 |"), text_chunk(" Faster claims |\n")]
        self.error = None
        self.stream_factory = None
        self.generate_calls = []
        self.stream_calls = []

    def generate_content(self, **kwargs):
        self.generate_calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(text=self.text)

    def generate_content_stream(self, **kwargs):
        self.stream_calls.append(kwargs)
        if self.stream_factory is not None:
            return self.stream_factory()
        if self.error is not None:
            raise self.error
        return iter(list(self.chunks))


class FakeGenAIClient:
    def __init__(self):
        self.models = FakeModels()


@pytest.fixture
def sample_pdf(tmp_path):
    """Create a minimal valid PDF file for testing."""
    path = tmp_path / "architecture-review.pdf"
    path.write_bytes(PDF_CONTENT)
    return path


@pytest.fixture
def make_pdf(tmp_path):
    """Factory for PDFs with a given name and (optionally sparse) size."""

    def _make(name="document.pdf", size=None, content=PDF_CONTENT):
        path = tmp_path / name
        with path.open("wb") as handle:
            handle.write(content)
            if size is not None:
                handle.truncate(size)
        return path

    return _make


@pytest.fixture
def temp_dir():
    path = Path(tempfile.mkdtemp(prefix="atam_test_uploads_"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def file_store():
    store = FakeFileStore()
    yield store
    store.release.set()


@pytest.fixture
def genai_client():
    return FakeGenAIClient()


@pytest.fixture
def uploader(file_store, temp_dir):
    uploader = PdfUploader(file_store, timeout_seconds=5, temp_dir=temp_dir)
    yield uploader
    uploader.shutdown()


@pytest.fixture
def chat(genai_client):
    service = GeminiChatService(genai_client, model="gemini-2.5-flash", access_mode=AccessMode.API_KEY)
    yield service
    service.shutdown()


@pytest.fixture
def copilot(uploader, chat):
    return CopilotService(uploader, chat)


@pytest.fixture
def client(copilot):
    """Create a test client for the FastAPI app backed by the fakes."""
    app.dependency_overrides[get_copilot] = lambda: copilot
    yield TestClient(app)
    app.dependency_overrides.clear()
