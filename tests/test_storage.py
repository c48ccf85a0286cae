from __future__ import annotations

from pathlib import Path

import pytest

from exam_ingest import storage
from exam_ingest.config import StorageConfig
from exam_ingest.errors import ConfigurationError, UploadError


class _FakeApi:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def upload_file(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return "commit-url"


def test_hub_store_uploads_under_prefix_and_returns_resolve_url() -> None:
    api = _FakeApi()
    store = storage.HubImageStore("acme/exam-images", path_prefix="/imgs/", api=api)
    url = store.upload(b"\x89PNG", "question_0_1_abcdef.png")

    call = api.calls[0]
    assert call["path_or_fileobj"] == b"\x89PNG"
    assert call["path_in_repo"] == "imgs/question_0_1_abcdef.png"
    assert call["repo_id"] == "acme/exam-images"
    assert call["repo_type"] == "dataset"
    assert url.endswith("/datasets/acme/exam-images/resolve/main/imgs/question_0_1_abcdef.png")


def test_hub_store_wraps_failures() -> None:
    store = storage.HubImageStore("acme/exam-images", api=_FakeApi(error=OSError("disk")))
    with pytest.raises(UploadError):
        store.upload(b"x", "a.png")


def test_hub_store_requires_repo_id() -> None:
    with pytest.raises(ConfigurationError):
        storage.HubImageStore("  ", api=_FakeApi())


def test_local_store_writes_file(tmp_path: Path) -> None:
    store = storage.LocalDirectoryStore(tmp_path / "out")
    url = store.upload(b"abc", "q.png")
    assert (tmp_path / "out" / "q.png").read_bytes() == b"abc"
    assert url.startswith("file://")


def test_resolve_hf_token_order(monkeypatch) -> None:
    monkeypatch.delenv("EXAM_INGEST_HF_TOKEN", raising=False)
    monkeypatch.delenv("HUGGINGFACE_HUB_TOKEN", raising=False)
    monkeypatch.delenv("HUGGINGFACEHUB_API_TOKEN", raising=False)
    monkeypatch.setenv("HF_TOKEN", "hf-env")
    assert storage.resolve_hf_token() == "hf-env"
    monkeypatch.setenv("EXAM_INGEST_HF_TOKEN", "project-env")
    assert storage.resolve_hf_token() == "project-env"
    assert storage.resolve_hf_token(" explicit ") == "explicit"


def test_build_image_store_local_backend(tmp_path: Path) -> None:
    store = storage.build_image_store(StorageConfig(backend="local", local_dir=tmp_path))
    assert isinstance(store, storage.LocalDirectoryStore)
    assert store.root == tmp_path


def test_build_image_store_hub_without_repo_fails() -> None:
    with pytest.raises(ConfigurationError):
        storage.build_image_store(StorageConfig(backend="hub"))
