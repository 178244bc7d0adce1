"""
ATAM Copilot Backend - REST API for AI-assisted architecture evaluation

This package provides a FastAPI-based web service that uses the Google Gemini
document API to draft Architecture Tradeoff Analysis Method (ATAM) artifacts
from design documents. It enables:

- PDF uploads to the Gemini Files API, reusable for ~48 hours
- Business driver extraction from uploaded documents (ATAM step 2)
- Utility tree drafting from approved business drivers (ATAM step 5)
- Architecture pattern and smell analysis
- Synchronous (full markdown) and streaming (server-sent events) responses

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - copilot: Boundary operations used by the HTTP layer
    - agents: Upload, prompt, and generation composition per ATAM operation
    - file_upload: PDF validation, bounded-time upload, temp-file cleanup
    - gemini: google-genai client, Files API, and sync/streaming generation
    - prompts: Packaged prompt templates
    - configuration: Config loading (OmegaConf + .env)
    - errors: Exception taxonomy mapped to HTTP status codes

Usage:
    Run the API server with:
        uvicorn atam_copilot_backend.main:app --reload --host 0.0.0.0 --port 8000

    Either GOOGLE_API_KEY (Gemini Developer API) or GOOGLE_CLOUD_PROJECT
    (Vertex AI) must be set, in the environment or a .env file.
"""

__version__ = "1.0.0"
