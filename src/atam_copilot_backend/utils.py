"""
Filesystem helpers for staging and sniffing uploaded documents.

This module provides helper functions for:
- Sanitizing client-supplied filenames for safe temp-file names
- Ensuring directory creation
- Sniffing whether a file or byte payload is a PDF
"""

from __future__ import annotations

import mimetypes
import re
from pathlib import Path
from typing import Iterable, Optional

from .models import PDF_MIME_TYPE

# Pattern to match characters that are not safe for filesystem paths
# Allows: alphanumeric characters, dots, underscores, and hyphens
SANITIZE_PATTERN = re.compile(r"[^a-zA-Z0-9._-]+")

PDF_MAGIC = b"%PDF-"


def sanitize_filename(filename: str, fallback: str = "document.pdf") -> str:
    """
    Generate a filesystem-safe name from a client-supplied filename.

    Args:
        filename: The original filename, possibly with a path component
        fallback: Value to return if sanitization results in an empty string

    Returns:
        A filesystem-safe filename or the fallback value

    Example:
        >>> sanitize_filename("Arch Review (v3).pdf")
        "Arch-Review-v3-.pdf"
        >>> sanitize_filename("@#$")
        "document.pdf"
    """
    cleaned = SANITIZE_PATTERN.sub("-", Path(filename or "").name.strip())
    cleaned = cleaned.strip("-_.")
    return cleaned or fallback


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    Args:
        path: The directory path to create

    Returns:
        The same path object for chaining
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def allowed_pdf_extensions() -> Iterable[str]:
    return [".pdf"]


def has_pdf_magic(data: bytes) -> bool:
    return data[: len(PDF_MAGIC)] == PDF_MAGIC


def sniff_mime_type(path: Path) -> Optional[str]:
    """
    Best guess at a local file's MIME type.

    The extension decides the candidate type; a ``.pdf`` file must also start
    with the ``%PDF-`` header to be reported as ``application/pdf``.
    """
    guessed, _ = mimetypes.guess_type(path.name)
    if guessed != PDF_MIME_TYPE:
        return guessed
    with path.open("rb") as handle:
        header = handle.read(len(PDF_MAGIC))
    return PDF_MIME_TYPE if has_pdf_magic(header) else "application/octet-stream"
