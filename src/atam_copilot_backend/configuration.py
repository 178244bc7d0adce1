from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

from .errors import ConfigurationError
from .models import AccessMode

_HERE = Path(__file__).resolve()
_CANDIDATE_CONFIG_PATHS = [parent / "config/config.yaml" for parent in _HERE.parents[:3]]

if os.environ.get("ATAM_CONFIG_PATH"):
    _CANDIDATE_CONFIG_PATHS.insert(0, Path(os.environ["ATAM_CONFIG_PATH"]))

CONFIG_PATH = next((path for path in _CANDIDATE_CONFIG_PATHS if path.exists()), None)
if CONFIG_PATH is None:  # pragma: no cover - the packaged config ships with the wheel
    raise FileNotFoundError("Default config.yaml could not be located; reinstall atam-copilot-backend or set ATAM_CONFIG_PATH.")


@dataclass(frozen=True)
class GenAISettings:
    access_mode: AccessMode
    api_key: str
    project_id: str
    location: str
    model: str
    temperature: float
    max_output_tokens: int
    generation_timeout_seconds: float
    workers: int


@dataclass(frozen=True)
class UploadSettings:
    max_files: int
    max_file_size_bytes: int
    timeout_seconds: float
    workers: int
    temp_dir: Optional[Path]


@dataclass(frozen=True)
class Settings:
    genai: GenAISettings
    upload: UploadSettings
    log_level: str


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    load_dotenv()
    return OmegaConf.load(CONFIG_PATH)


def make_runtime_config(overrides: Optional[Dict[str, Any]] = None) -> DictConfig:
    base = OmegaConf.create(OmegaConf.to_container(_load_default_config(), resolve=False))
    OmegaConf.set_struct(base, True)
    merged = DictConfig(OmegaConf.merge(base, OmegaConf.create(overrides or {})))
    return merged


def resolve_access_mode(api_key: str, project_id: str) -> AccessMode:
    """Pick the Gemini auth mode once, API key first."""
    if api_key and api_key.strip():
        return AccessMode.API_KEY
    if project_id and project_id.strip():
        return AccessMode.VERTEX_AI
    raise ConfigurationError("Must configure either GOOGLE_API_KEY (genai.api_key) or GOOGLE_CLOUD_PROJECT (genai.project_id)")


def load_settings(overrides: Optional[Dict[str, Any]] = None) -> Settings:
    config = OmegaConf.to_container(make_runtime_config(overrides), resolve=True)
    genai_cfg: Dict[str, Any] = config["genai"]  # type: ignore[index]
    upload_cfg: Dict[str, Any] = config["upload"]  # type: ignore[index]

    api_key = str(genai_cfg["api_key"] or "")
    project_id = str(genai_cfg["project_id"] or "")

    return Settings(
        genai=GenAISettings(
            access_mode=resolve_access_mode(api_key, project_id),
            api_key=api_key,
            project_id=project_id,
            location=str(genai_cfg["location"]),
            model=str(genai_cfg["model"]),
            temperature=float(genai_cfg["temperature"]),
            max_output_tokens=int(genai_cfg["max_output_tokens"]),
            generation_timeout_seconds=float(genai_cfg["generation_timeout_seconds"]),
            workers=int(genai_cfg["workers"]),
        ),
        upload=UploadSettings(
            max_files=int(upload_cfg["max_files"]),
            max_file_size_bytes=int(upload_cfg["max_file_size_bytes"]),
            timeout_seconds=float(upload_cfg["timeout_seconds"]),
            workers=int(upload_cfg["workers"]),
            temp_dir=Path(upload_cfg["temp_dir"]) if upload_cfg["temp_dir"] else None,
        ),
        log_level=str(config["logging"]["level"]).upper(),  # type: ignore[index]
    )
