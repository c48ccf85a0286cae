from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

from .errors import ConfigurationError

DEFAULT_GEMINI_MODEL = "gemini-2.0-flash-lite"
CONFIG_FILENAME = "exam_ingest.toml"


class GeminiConfig(BaseModel):
    model: str = DEFAULT_GEMINI_MODEL
    mode: Literal["text", "multimodal"] = "multimodal"
    api_key: Optional[str] = None


class RenderConfig(BaseModel):
    dpi: int = 150
    jpeg_quality: int = 85
    thread_count: int = 4

    @model_validator(mode="after")
    def _validate_ranges(self) -> "RenderConfig":
        if self.dpi < 36:
            raise ValueError("render.dpi must be >= 36.")
        if not (1 <= self.jpeg_quality <= 100):
            raise ValueError("render.jpeg_quality must be in [1, 100].")
        if self.thread_count < 1:
            raise ValueError("render.thread_count must be >= 1.")
        return self


class ReconcileConfig(BaseModel):
    window_size: int = 2
    stride: int = 1
    fingerprint_length: int = 50

    @model_validator(mode="after")
    def _validate_window(self) -> "ReconcileConfig":
        if self.window_size < 1:
            raise ValueError("reconcile.window_size must be >= 1.")
        if not (1 <= self.stride <= self.window_size):
            raise ValueError("reconcile.stride must be in [1, window_size] so no page is skipped.")
        if self.fingerprint_length < 1:
            raise ValueError("reconcile.fingerprint_length must be >= 1.")
        return self


class StorageConfig(BaseModel):
    backend: Literal["hub", "local"] = "hub"
    repo_id: Optional[str] = None
    repo_type: Literal["dataset", "model", "space"] = "dataset"
    path_prefix: str = "exam-ingest-images"
    local_dir: Path = Path("data/uploaded_images")
    token: Optional[str] = None

    @model_validator(mode="after")
    def _validate_backend(self) -> "StorageConfig":
        if self.backend == "hub" and self.repo_id is not None and not self.repo_id.strip():
            raise ValueError("storage.repo_id must not be blank.")
        return self


class IngestConfig(BaseModel):
    url: str = "http://localhost:5000/api/ingest"
    timeout_sec: float = 30.0


class AppConfig(BaseModel):
    gemini: GeminiConfig = Field(default_factory=GeminiConfig)
    render: RenderConfig = Field(default_factory=RenderConfig)
    reconcile: ReconcileConfig = Field(default_factory=ReconcileConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    ingest: IngestConfig = Field(default_factory=IngestConfig)


def resolve_config_path(explicit_path: Path | str | None = None) -> Optional[Path]:
    candidates: list[Path] = []
    if explicit_path:
        candidates.append(Path(explicit_path).expanduser())
    env_path = os.getenv("EXAM_INGEST_CONFIG")
    if env_path:
        candidates.append(Path(env_path).expanduser())

    candidates.append(Path.cwd() / CONFIG_FILENAME)
    for parent in Path(__file__).resolve().parents:
        candidates.append(parent / CONFIG_FILENAME)

    seen: set[Path] = set()
    for path in candidates:
        resolved = path.resolve()
        if resolved in seen:
            continue
        seen.add(resolved)
        if resolved.is_file():
            return resolved
    return None


def read_config_data(path: Path) -> dict:
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigurationError(f"Could not read config file {path}: {exc}") from exc
    return data


def load_config(config_path: Path | str | None = None) -> AppConfig:
    if config_path is not None and not Path(config_path).expanduser().is_file():
        raise ConfigurationError(f"Config file not found: {config_path}")
    path = resolve_config_path(config_path)
    if path is None:
        return AppConfig()

    payload = read_config_data(path)
    # A bare top-level api_key is accepted as the Gemini key.
    if isinstance(payload.get("api_key"), str):
        gemini_section = dict(payload.get("gemini") or {})
        gemini_section.setdefault("api_key", payload["api_key"])
        payload = {k: v for k, v in payload.items() if k != "api_key"}
        payload["gemini"] = gemini_section
    try:
        cfg = AppConfig.model_validate(payload)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid config at {path}:\n{exc}") from exc

    cfg.storage.local_dir = cfg.storage.local_dir.expanduser()
    return cfg


__all__ = [
    "AppConfig",
    "DEFAULT_GEMINI_MODEL",
    "GeminiConfig",
    "IngestConfig",
    "ReconcileConfig",
    "RenderConfig",
    "StorageConfig",
    "load_config",
    "resolve_config_path",
]
