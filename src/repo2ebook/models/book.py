"""Data models for chapters and package metadata."""

import uuid
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from repo2ebook.models.archive import ImageReference


class Chapter(BaseModel):
    """One source document and its place in the reading order."""

    model_config = ConfigDict(frozen=True)

    source_path: Path
    href: str  # Rendered path, relative to OEBPS/
    title: str
    index: int
    relative_path: str = ""  # Source path relative to the walked root
    is_code: bool = False


class RenderedChapter(BaseModel):
    """Converted and localized XHTML body of a chapter."""

    chapter: Chapter
    body: str
    images: list[ImageReference] = Field(default_factory=list)
    failed: bool = False
    error: str | None = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PackageMetadata(BaseModel):
    """Book-level metadata embedded in content.opf and toc.ncx."""

    title: str
    author: str = "Unknown Author"
    language: str = "en"
    uuid: str = Field(default_factory=lambda: str(uuid.uuid4()))
    modified: datetime = Field(default_factory=_utc_now)

    @property
    def identifier(self) -> str:
        """URN form shared by dc:identifier and dtb:uid."""
        return f"urn:uuid:{self.uuid}"

    @property
    def modified_timestamp(self) -> str:
        """ISO-8601 UTC timestamp truncated to whole seconds."""
        modified = self.modified
        if modified.tzinfo is not None:
            modified = modified.astimezone(timezone.utc)
        return modified.strftime("%Y-%m-%dT%H:%M:%SZ")


class BuildResult(BaseModel):
    """Summary of a finished build."""

    output_path: Path
    chapter_count: int
    image_count: int
    failed_chapters: list[str] = Field(default_factory=list)
    placeholder_images: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
