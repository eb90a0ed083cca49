"""Data models."""

from repo2ebook.models.archive import (
    ImageReference,
    ImageStatus,
    ManifestEntry,
    ValidationReport,
)
from repo2ebook.models.book import (
    BuildResult,
    Chapter,
    PackageMetadata,
    RenderedChapter,
)
from repo2ebook.models.config import (
    BuildConfig,
    ConverterName,
    SourceMode,
)
from repo2ebook.models.epub import (
    BookMetadata,
    EpubChapter,
    ParsedEpub,
    TOCEntry,
)

__all__ = [
    # Archive models
    "ImageStatus",
    "ImageReference",
    "ManifestEntry",
    "ValidationReport",
    # Book models
    "Chapter",
    "RenderedChapter",
    "PackageMetadata",
    "BuildResult",
    # Config models
    "BuildConfig",
    "ConverterName",
    "SourceMode",
    # Read-back models
    "TOCEntry",
    "EpubChapter",
    "BookMetadata",
    "ParsedEpub",
]
