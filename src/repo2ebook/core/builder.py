"""Build an EPUB from a source tree: walk, convert, localize, assemble."""

import logging
import tempfile
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path

import requests

from repo2ebook.core.archive import ArchiveAssembler, fallback_body, xhtml_fragment
from repo2ebook.core.context import BuildContext
from repo2ebook.core.converter import (
    ConversionError,
    ConverterFactory,
    DocumentConverter,
)
from repo2ebook.core.image_localizer import ImageLocalizer
from repo2ebook.core.source_walker import SourceWalker, chapter_markdown
from repo2ebook.models.archive import ImageReference, ImageStatus
from repo2ebook.models.book import (
    BuildResult,
    Chapter,
    PackageMetadata,
    RenderedChapter,
)
from repo2ebook.models.config import BuildConfig, SourceMode

log = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, Chapter], None]


def spine_images(rendered: Sequence[RenderedChapter]) -> list[ImageReference]:
    """Images of all chapters in reading order, first use of a local path wins.

    Registration order depends on worker timing; this order does not.
    """
    seen: set[str] = set()
    images = []
    for item in rendered:
        for ref in item.images:
            if ref.local_path not in seen:
                seen.add(ref.local_path)
                images.append(ref)
    return images


class EpubBuilder:
    """Turn a directory of Markdown or code into a packaged EPUB."""

    def __init__(
        self,
        config: BuildConfig | None = None,
        converter: DocumentConverter | None = None,
        session: requests.Session | None = None,
        on_progress: ProgressCallback | None = None,
    ):
        self.config = config or BuildConfig()
        self.converter = converter
        self.session = session
        self.on_progress = on_progress

    def build(
        self, source_dir: Path, output_path: Path, metadata: PackageMetadata
    ) -> BuildResult:
        """Run the whole pipeline and write the archive to output_path.

        Raises:
            FileNotFoundError: If source_dir does not exist
            NotADirectoryError: If source_dir is a file
            ConverterUnavailableError: If the configured converter cannot run
            ArchiveError: If the package cannot be generated or written
        """
        source_dir = source_dir.resolve()
        chapters = list(SourceWalker(source_dir, self.config))
        if not chapters:
            log.warning(f"No source documents found in {source_dir}")

        if self.config.cover_image is not None and not self.config.cover_image.is_file():
            raise FileNotFoundError(f"Cover image not found: {self.config.cover_image}")

        converter = self.converter or ConverterFactory.create(
            self.config.converter, timeout=self.config.converter_timeout
        )
        log.info(
            f"Building {len(chapters)} chapter(s) with {converter.name} "
            f"({self.config.max_workers} worker(s))"
        )

        with tempfile.TemporaryDirectory(prefix="repo2ebook-") as tmp:
            context = BuildContext(working_dir=Path(tmp), source_root=source_dir)
            context.prepare()
            localizer = ImageLocalizer(context, self.config, session=self.session)

            rendered = self.render_chapters(chapters, converter, context, localizer)
            images = spine_images(rendered)

            ArchiveAssembler(context).write(
                output_path,
                metadata,
                rendered,
                images,
                cover_image=self.config.cover_image,
            )

        failed = [r.chapter.relative_path for r in rendered if r.failed]
        placeholders = sorted(
            {
                ref.original_src
                for r in rendered
                for ref in r.images
                if ref.status == ImageStatus.PLACEHOLDER
            }
        )
        warnings = [f"Conversion failed: {path}" for path in failed] + [
            f"Image replaced by placeholder: {src}" for src in placeholders
        ]
        return BuildResult(
            output_path=output_path,
            chapter_count=len(rendered),
            image_count=len(images),
            failed_chapters=failed,
            placeholder_images=placeholders,
            warnings=warnings,
        )

    def render_chapters(
        self,
        chapters: Sequence[Chapter],
        converter: DocumentConverter,
        context: BuildContext,
        localizer: ImageLocalizer,
    ) -> list[RenderedChapter]:
        """Render chapters on a bounded pool, keeping discovery order."""
        total = len(chapters)
        results: dict[int, RenderedChapter] = {}

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            futures = {
                executor.submit(
                    self.render_chapter, chapter, converter, context, localizer
                ): chapter
                for chapter in chapters
            }
            for completed, future in enumerate(as_completed(futures), 1):
                chapter = futures[future]
                results[chapter.index] = future.result()
                if self.on_progress is not None:
                    self.on_progress(completed, total, chapter)

        return [results[chapter.index] for chapter in chapters]

    def render_chapter(
        self,
        chapter: Chapter,
        converter: DocumentConverter,
        context: BuildContext,
        localizer: ImageLocalizer,
    ) -> RenderedChapter:
        """Convert one chapter, falling back to an error notice on failure."""
        destination = context.working_dir / "html" / chapter.href
        try:
            source = self._markdown_source(chapter, context)
            converter.convert(source, destination)
            body = destination.read_text(encoding="utf-8")
        except (ConversionError, OSError) as e:
            log.warning(f"Conversion failed for {chapter.relative_path}: {e}")
            return RenderedChapter(
                chapter=chapter,
                body=fallback_body(chapter.title, str(e)),
                failed=True,
                error=str(e),
            )

        if not self.config.localize_images:
            return RenderedChapter(chapter=chapter, body=xhtml_fragment(body))

        body, images = localizer.localize_html(
            body, chapter.source_path.parent, chapter.href
        )
        return RenderedChapter(chapter=chapter, body=body, images=images)

    def _markdown_source(self, chapter: Chapter, context: BuildContext) -> Path:
        """Markdown file handed to the converter for this chapter."""
        if self.config.mode == SourceMode.MARKDOWN and not chapter.is_code:
            return chapter.source_path

        path = context.markdown_dir / f"{chapter.relative_path}.md"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(chapter_markdown(chapter, self.config.mode), encoding="utf-8")
        return path
