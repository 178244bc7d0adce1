"""
Exception taxonomy for the copilot backend.

Every failure raised by the upload, prompt, and generation pipeline derives
from CopilotError so the HTTP layer can map each kind to a status code in one
place (see main.py). Provider and upload errors keep the original exception
as ``__cause__`` for diagnostics.
"""

from __future__ import annotations


class CopilotError(Exception):
    """Base class for all pipeline errors."""


class InvalidArgument(CopilotError):
    """Caller supplied empty, malformed, oversize, or wrong-type input."""


class UploadTimeout(CopilotError):
    """The provider upload did not finish within the configured bound."""


class ProviderError(CopilotError):
    """The Gemini API failed or returned an unusable response."""


class GenerationTimeout(ProviderError):
    """A generation call exceeded its deadline."""


class TemplateNotFound(CopilotError):
    """A named prompt template is missing from the package resources."""


class ConfigurationError(CopilotError):
    """Neither an API key nor a Vertex AI project is configured."""
