"""Read-back view of a packaged EPUB, as shown by the info command."""

from pydantic import BaseModel, Field


class TOCEntry(BaseModel):
    """Navigation entry; nested entries are kept as children."""

    id: str  # Document name without fragment
    title: str
    href: str
    level: int = 0
    children: list["TOCEntry"] = Field(default_factory=list)


class EpubChapter(BaseModel):
    """Spine document of a packaged book."""

    id: str
    title: str
    index: int  # Position in the spine
    file_name: str
    word_count: int = 0
    has_images: bool = False


class BookMetadata(BaseModel):
    title: str
    authors: list[str] = Field(default_factory=list)
    language: str | None = None
    identifier: str | None = None


class ParsedEpub(BaseModel):
    """Metadata, navigation and reading order of an EPUB."""

    metadata: BookMetadata
    toc: list[TOCEntry]
    chapters: list[EpubChapter]
    image_count: int = 0

    @property
    def total_words(self) -> int:
        return sum(chapter.word_count for chapter in self.chapters)
