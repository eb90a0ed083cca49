"""Render a whole source tree as one book in a single pandoc run."""

import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Literal

import requests

from repo2ebook.core.context import BuildContext
from repo2ebook.core.converter import ConversionError, ConverterUnavailableError
from repo2ebook.core.image_localizer import ImageLocalizer
from repo2ebook.core.source_walker import SourceWalker, chapter_markdown
from repo2ebook.models.book import Chapter, PackageMetadata
from repo2ebook.models.config import BuildConfig, SourceMode

log = logging.getLogger(__name__)

BookFormat = Literal["epub", "pdf"]


class PandocBookWriter:
    """Concatenate every chapter into one Markdown stream piped to pandoc."""

    TIMEOUT_SECONDS = 600
    TOC_DEPTH = "2"
    PDF_ENGINE = "xelatex"
    PDF_VARIABLES = [
        "mainfont=DejaVu Serif",
        "monofont=DejaVu Sans Mono",
        "papersize=a4",
        "geometry:margin=2cm",
    ]

    def __init__(
        self,
        config: BuildConfig | None = None,
        executable: str = "pandoc",
        session: requests.Session | None = None,
        timeout: float = TIMEOUT_SECONDS,
    ):
        self.config = config or BuildConfig()
        self.executable = executable
        self.session = session
        self.timeout = timeout

    def build_command(
        self,
        book_format: BookFormat,
        metadata: PackageMetadata,
        output_path: Path,
        resource_path: Path | None = None,
    ) -> list[str]:
        cmd = [
            self.executable,
            "-f", "markdown",
            "-t", book_format,
            "--metadata", f"title={metadata.title}",
            "--metadata", f"author={metadata.author}",
        ]
        if book_format == "epub":
            cmd += ["--metadata", f"lang={metadata.language}"]
        else:
            cmd += ["--pdf-engine", self.PDF_ENGINE]
            for variable in self.PDF_VARIABLES:
                cmd += ["-V", variable]
        cmd += ["--toc", "--toc-depth", self.TOC_DEPTH]
        if resource_path is not None:
            cmd += ["--resource-path", str(resource_path)]
        cmd += ["-o", str(output_path)]
        return cmd

    def compose(
        self, chapters: list[Chapter], localizer: ImageLocalizer | None = None
    ) -> str:
        """One Markdown document with a level-1 heading per chapter."""
        parts = []
        for chapter in chapters:
            content = chapter_markdown(chapter, SourceMode.MARKDOWN)
            if localizer is not None:
                content, _ = localizer.localize_markdown(
                    content, chapter.source_path.parent
                )
            parts.append(f"# {chapter.title}\n{content}\n\n")
        return "".join(parts)

    def write(
        self,
        source_dir: Path,
        output_path: Path,
        metadata: PackageMetadata,
        book_format: BookFormat = "pdf",
    ) -> Path:
        """Render the book and move it to output_path once pandoc succeeds.

        Raises:
            ConverterUnavailableError: If pandoc is not installed
            ConversionError: If pandoc fails or times out
        """
        if shutil.which(self.executable) is None:
            raise ConverterUnavailableError(f"{self.executable} not found on PATH")

        source_dir = source_dir.resolve()
        chapters = list(SourceWalker(source_dir, self.config))
        log.info(f"Rendering {len(chapters)} chapter(s) to {book_format.upper()}")

        with tempfile.TemporaryDirectory(prefix="repo2ebook-") as tmp:
            context = BuildContext(working_dir=Path(tmp), source_root=source_dir)
            context.prepare()
            localizer = None
            if self.config.localize_images:
                localizer = ImageLocalizer(context, self.config, session=self.session)
            document = self.compose(chapters, localizer)

            staged = Path(tmp) / f"book.{book_format}"
            cmd = self.build_command(
                book_format, metadata, staged, resource_path=context.content_dir
            )
            try:
                result = subprocess.run(
                    cmd,
                    input=document,
                    capture_output=True,
                    text=True,
                    timeout=self.timeout,
                )
            except subprocess.TimeoutExpired:
                raise ConversionError(
                    "TIMEOUT", f"pandoc timed out after {self.timeout}s"
                )

            if result.returncode != 0:
                error_msg = result.stderr.strip() or result.stdout.strip() or "Unknown error"
                raise ConversionError("CLI_ERROR", error_msg, code=result.returncode)
            if result.stderr.strip():
                log.warning(f"pandoc: {result.stderr.strip()}")

            output_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(staged), str(output_path))

        return output_path
