from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List

from pydantic import BaseModel, ConfigDict, Field

PDF_MIME_TYPE = "application/pdf"

BUSINESS_OBJECTIVE_MARKERS = ("Business Objectives", "业务目标")


class FileState(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    FAILED = "FAILED"


class AccessMode(str, Enum):
    API_KEY = "API_KEY"
    VERTEX_AI = "VERTEX_AI"


class UploadedFileRef(BaseModel):
    """A document hosted by the Gemini Files API, reusable for ~48 hours."""

    model_config = ConfigDict(frozen=True)

    id: str = ""
    uri: str
    display_name: str = ""
    size_bytes: int = 0
    mime_type: str = PDF_MIME_TYPE
    state: FileState = FileState.ACTIVE

    @classmethod
    def from_uri(cls, uri: str) -> "UploadedFileRef":
        return cls(uri=uri)


class ModelInfo(BaseModel):
    model_name: str
    provider: str
    access_mode: AccessMode
    version: str


class HealthStatus(BaseModel):
    status: str
    application: str
    version: str
    timestamp: datetime
    message: str


class ExtractRequest(BaseModel):
    file_uris: List[str] = Field(default_factory=list)


class UtilityTreeRequest(BaseModel):
    business_drivers_markdown: str = ""
