"""Read a packaged EPUB back using ebooklib."""

import warnings
from pathlib import Path

import ebooklib
from bs4 import BeautifulSoup, XMLParsedAsHTMLWarning
from ebooklib import epub

from repo2ebook.models.epub import BookMetadata, EpubChapter, ParsedEpub, TOCEntry

# Chapters are XHTML; the lxml HTML parser handles them fine
warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)


def _first(values: list) -> str | None:
    """First value of an ebooklib metadata list of (value, attrs) pairs."""
    return values[0][0] if values else None


def _document_name(href: str | None) -> str:
    return (href or "").split("#", 1)[0]


class EpubReader:
    """Inspect an EPUB: metadata, navigation and spine documents."""

    def __init__(self, epub_path: Path):
        self.path = epub_path
        self.book = epub.read_epub(str(epub_path))

    def parse(self) -> ParsedEpub:
        toc = self.read_toc()
        return ParsedEpub(
            metadata=self.read_metadata(),
            toc=toc,
            chapters=self.read_chapters(toc),
            image_count=sum(1 for _ in self.book.get_items_of_type(ebooklib.ITEM_IMAGE)),
        )

    def read_metadata(self) -> BookMetadata:
        creators = self.book.get_metadata("DC", "creator")
        return BookMetadata(
            title=_first(self.book.get_metadata("DC", "title")) or self.path.stem,
            authors=[value for value, _ in creators],
            language=_first(self.book.get_metadata("DC", "language")),
            identifier=_first(self.book.get_metadata("DC", "identifier")),
        )

    def read_toc(self) -> list[TOCEntry]:
        return [self._toc_entry(node, 0) for node in self.book.toc]

    def _toc_entry(self, node, level: int) -> TOCEntry:
        # Nested sections come back from ebooklib as (Section, [children])
        children = []
        if isinstance(node, tuple):
            node, nested = node
            children = [self._toc_entry(child, level + 1) for child in nested]
        return TOCEntry(
            id=_document_name(node.href),
            title=node.title or "Untitled",
            href=node.href or "",
            level=level,
            children=children,
        )

    def spine_ids(self) -> list[str]:
        return [idref for idref, _ in self.book.spine]

    def read_chapters(self, toc: list[TOCEntry]) -> list[EpubChapter]:
        """Spine documents in reading order, titled from the navigation."""
        titles: dict[str, str] = {}
        pending = list(toc)
        while pending:
            entry = pending.pop(0)
            titles.setdefault(entry.id, entry.title)
            pending.extend(entry.children)

        chapters = []
        for position, idref in enumerate(self.spine_ids()):
            item = self.book.get_item_with_id(idref)
            if item is None or item.get_type() != ebooklib.ITEM_DOCUMENT:
                continue
            soup = BeautifulSoup(item.get_content(), "lxml")
            name = item.get_name()
            chapters.append(
                EpubChapter(
                    id=item.get_id(),
                    title=titles.get(name) or self._heading(soup) or name,
                    index=position,
                    file_name=name,
                    word_count=self._word_count(soup),
                    has_images=soup.find("img") is not None,
                )
            )
        return chapters

    @staticmethod
    def _heading(soup: BeautifulSoup) -> str | None:
        for element in soup.find_all(["h1", "h2", "title"], limit=3):
            text = element.get_text(strip=True)
            if text:
                return text
        return None

    @staticmethod
    def _word_count(soup: BeautifulSoup) -> int:
        body = soup.body or soup
        return len(body.get_text(separator=" ", strip=True).split())
