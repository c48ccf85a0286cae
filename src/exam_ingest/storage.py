from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Protocol

from huggingface_hub import HfApi, hf_hub_url
from huggingface_hub.errors import HfHubHTTPError

from .config import StorageConfig
from .errors import ConfigurationError, UploadError


class ImageStore(Protocol):
    def upload(self, data: bytes, name: str) -> str:
        ...


def resolve_hf_token(explicit_token: Optional[str] = None, preferred_env: str = "EXAM_INGEST_HF_TOKEN") -> Optional[str]:
    candidates = (
        explicit_token,
        os.getenv(preferred_env),
        os.getenv("HF_TOKEN"),
        os.getenv("HUGGINGFACE_HUB_TOKEN"),
        os.getenv("HUGGINGFACEHUB_API_TOKEN"),
    )
    for token in candidates:
        if isinstance(token, str) and token.strip():
            return token.strip()
    return None


class HubImageStore:
    """Uploads images into a Hugging Face Hub repo and returns resolve URLs."""

    def __init__(
        self,
        repo_id: str,
        token: Optional[str] = None,
        repo_type: str = "dataset",
        path_prefix: str = "exam-ingest-images",
        api: Optional[HfApi] = None,
    ) -> None:
        if not repo_id or not repo_id.strip():
            raise ConfigurationError("storage.repo_id is required for Hub uploads.")
        self.repo_id = repo_id.strip()
        self.repo_type = repo_type
        self.path_prefix = path_prefix.strip("/")
        self.api = api or HfApi(token=resolve_hf_token(token))

    def _path_in_repo(self, name: str) -> str:
        return f"{self.path_prefix}/{name}" if self.path_prefix else name

    def upload(self, data: bytes, name: str) -> str:
        path_in_repo = self._path_in_repo(name)
        try:
            self.api.upload_file(
                path_or_fileobj=data,
                path_in_repo=path_in_repo,
                repo_id=self.repo_id,
                repo_type=self.repo_type,
                commit_message=f"Upload {name}",
            )
        except (HfHubHTTPError, OSError, ValueError) as exc:
            raise UploadError(f"Failed to upload image {name}: {exc}") from exc
        return hf_hub_url(repo_id=self.repo_id, filename=path_in_repo, repo_type=self.repo_type)


class LocalDirectoryStore:
    """Writes images under a directory and returns ``file://`` URLs."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).expanduser()

    def upload(self, data: bytes, name: str) -> str:
        target = self.root / name
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise UploadError(f"Failed to store image {name}: {exc}") from exc
        return target.resolve().as_uri()


def build_image_store(cfg: StorageConfig) -> ImageStore:
    if cfg.backend == "local":
        return LocalDirectoryStore(cfg.local_dir)
    return HubImageStore(
        repo_id=cfg.repo_id or "",
        token=cfg.token,
        repo_type=cfg.repo_type,
        path_prefix=cfg.path_prefix,
    )


__all__ = ["HubImageStore", "ImageStore", "LocalDirectoryStore", "build_image_store", "resolve_hf_token"]
