from __future__ import annotations

from typing import Optional, Sequence


class ExamIngestError(Exception):
    """Base class for failures raised by the ingestion pipeline."""


class ConfigurationError(ExamIngestError):
    """A required setting or credential is missing or invalid."""


class DocumentParseError(ExamIngestError):
    """The source document could not be decoded into a complete page sequence."""


class WindowExtractionError(ExamIngestError):
    """One window's oracle call failed or returned malformed data."""

    def __init__(self, message: str, pages: Optional[Sequence[int]] = None) -> None:
        super().__init__(message)
        self.pages = list(pages or [])


class CropError(ExamIngestError):
    """A box was malformed or the source raster could not be decoded."""


class UploadError(ExamIngestError):
    """Object storage or document store rejected an export upload."""


__all__ = [
    "ConfigurationError",
    "CropError",
    "DocumentParseError",
    "ExamIngestError",
    "UploadError",
    "WindowExtractionError",
]
