"""Walk a source tree and produce chapter records in reading order."""

import logging
import re
from collections.abc import Iterator
from pathlib import Path

from repo2ebook.core.titles import chapter_href, chapter_title
from repo2ebook.models.book import Chapter
from repo2ebook.models.config import BuildConfig, SourceMode

log = logging.getLogger(__name__)

MARKDOWN_EXTENSIONS = {".md", ".markdown"}


def code_to_markdown(content: str, language: str = "") -> str:
    """Wrap source code in a fenced block that cannot be closed from inside."""
    language = language.strip() if isinstance(language, str) else ""
    longest = max((len(run) for run in re.findall(r"`+", content)), default=0)
    fence = "`" * max(3, longest + 1)
    return f"{fence}{language}\n{content}\n{fence}"


class SourceWalker:
    """Restartable, depth-first walk over a source tree.

    Entries of each directory are visited in name order; a subdirectory is
    descended into where it sorts. Every iteration rescans the tree and yields
    fresh Chapter records, so the walker can be iterated more than once.
    """

    def __init__(self, root: Path, config: BuildConfig | None = None):
        self.root = root
        self.config = config or BuildConfig()
        self._code_extensions = {
            ext.lower() for ext in self.config.code_extensions
        }
        self._skip_dirs = set(self.config.skip_dirs)

    def __iter__(self) -> Iterator[Chapter]:
        if not self.root.exists():
            raise FileNotFoundError(f"Source directory not found: {self.root}")
        if not self.root.is_dir():
            raise NotADirectoryError(f"Source is not a directory: {self.root}")

        used_hrefs: set[str] = set()
        index = 0
        for path in self._walk(self.root):
            relative = path.relative_to(self.root).as_posix()
            href = self._unique_href(chapter_href(relative), used_hrefs)
            yield Chapter(
                source_path=path,
                href=href,
                title=chapter_title(relative),
                index=index,
                relative_path=relative,
                is_code=self._suffix(path) not in MARKDOWN_EXTENSIONS,
            )
            index += 1

    def _walk(self, directory: Path) -> Iterator[Path]:
        for entry in sorted(directory.iterdir(), key=lambda p: p.name):
            if entry.is_dir():
                if self._skip_directory(entry.name):
                    log.debug(f"Skipping directory: {entry}")
                    continue
                yield from self._walk(entry)
            elif entry.is_file() and self._accepts(entry):
                yield entry

    def _skip_directory(self, name: str) -> bool:
        if name.startswith("."):
            return True
        return self.config.mode == SourceMode.CODE and name in self._skip_dirs

    def _accepts(self, path: Path) -> bool:
        suffix = self._suffix(path)
        if suffix in MARKDOWN_EXTENSIONS:
            return True
        return self.config.mode == SourceMode.CODE and suffix in self._code_extensions

    @staticmethod
    def _suffix(path: Path) -> str:
        # ".editorconfig" has no suffix for pathlib, only a name
        if path.name.startswith(".") and path.name.count(".") == 1:
            return path.name.lower()
        return path.suffix.lower()

    @staticmethod
    def _unique_href(href: str, used: set[str]) -> str:
        candidate = href
        counter = 2
        while candidate in used:
            stem = href[: -len(".xhtml")]
            candidate = f"{stem}_{counter}.xhtml"
            counter += 1
        used.add(candidate)
        return candidate


def chapter_markdown(chapter: Chapter, mode: SourceMode) -> str:
    """Markdown text fed to the converter for a chapter.

    In code mode every chapter starts with a level-1 heading carrying its
    title and code files are fenced with their extension as language.
    """
    content = chapter.source_path.read_text(encoding="utf-8", errors="replace")
    if chapter.is_code:
        language = SourceWalker._suffix(chapter.source_path).lstrip(".")
        content = code_to_markdown(content, language)
    if mode == SourceMode.CODE:
        return f"# {chapter.title}\n\n{content}"
    return content
