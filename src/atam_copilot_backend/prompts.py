"""
Prompt templates shipped with the package.

Templates are plain markdown files under ``templates/`` and are read-only at
runtime. Multi-stage operations append the previous stage's approved output
under a fixed separator and heading; nothing else is interpolated.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from importlib import resources

from .errors import TemplateNotFound

logger = logging.getLogger(__name__)

TEMPLATE_PACKAGE = "atam_copilot_backend.templates"
TEMPLATE_SUFFIX = ".md"
SEPARATOR = "\n\n---\n\n"

BUSINESS_DRIVER_EXTRACTION = "business-driver-extraction"
UTILITY_TREE_GENERATION = "utility-tree-generation"
ARCHITECTURE_ANALYSIS = "architecture-analysis"


@lru_cache(maxsize=None)
def _read_template(package: str, name: str) -> str:
    resource = resources.files(package).joinpath(f"{name}{TEMPLATE_SUFFIX}")
    if not resource.is_file():
        raise TemplateNotFound(f"Prompt template not found: {name}")
    text = resource.read_text(encoding="utf-8")
    logger.debug("Loaded prompt template %s (%d characters)", name, len(text))
    return text


class PromptLibrary:
    def __init__(self, package: str = TEMPLATE_PACKAGE) -> None:
        self.package = package

    def load(self, name: str) -> str:
        return _read_template(self.package, name)

    def assemble(self, name: str, context: str, heading: str) -> str:
        """Template, separator, ``## heading``, then the caller's context block."""
        return f"{self.load(name)}{SEPARATOR}## {heading}\n\n{context}"
