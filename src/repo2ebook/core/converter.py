"""Markdown to HTML conversion through pandoc or python-markdown."""

import logging
import shutil
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

import markdown

from repo2ebook.models.config import ConverterName

log = logging.getLogger(__name__)


class ConversionError(Exception):
    """A single document could not be converted."""

    def __init__(self, error_type: str, message: str, code: int | None = None):
        self.error_type = error_type
        self.message = message
        self.code = code
        super().__init__(f"{error_type}: {message}")


class ConverterUnavailableError(Exception):
    """The requested converter cannot run on this machine."""


class DocumentConverter(ABC):
    """Convert a Markdown file into an HTML body fragment."""

    name: str = ""

    @abstractmethod
    def convert(self, source: Path, destination: Path) -> Path:
        """Convert source and write the HTML fragment to destination."""
        pass


class PandocConverter(DocumentConverter):
    """Run the pandoc binary once per document."""

    name = "pandoc"
    DEFAULT_TIMEOUT = 120.0

    def __init__(self, executable: str = "pandoc", timeout: float = DEFAULT_TIMEOUT):
        self.executable = executable
        self.timeout = timeout

    def build_command(self, source: Path, destination: Path) -> list[str]:
        return [
            self.executable,
            str(source),
            "-f", "markdown",
            "-t", "html",
            "-o", str(destination),
        ]

    def convert(self, source: Path, destination: Path) -> Path:
        destination.parent.mkdir(parents=True, exist_ok=True)
        cmd = self.build_command(source, destination)

        try:
            # capture_output drains both pipes before returning
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            raise ConversionError(
                "TIMEOUT", f"pandoc timed out after {self.timeout}s on {source}"
            )
        except OSError as e:
            raise ConversionError("EXEC_ERROR", str(e))

        if result.returncode != 0:
            error_msg = result.stderr.strip() or result.stdout.strip() or "Unknown error"
            raise ConversionError("CLI_ERROR", error_msg, code=result.returncode)

        if result.stderr.strip():
            log.debug(f"pandoc stderr for {source}: {result.stderr.strip()}")
        return destination


class MarkdownConverter(DocumentConverter):
    """Convert in-process with python-markdown."""

    name = "markdown"
    EXTENSIONS = ["extra", "sane_lists", "toc"]

    def convert(self, source: Path, destination: Path) -> Path:
        try:
            text = source.read_text(encoding="utf-8", errors="replace")
            html = markdown.markdown(
                text, extensions=self.EXTENSIONS, output_format="xhtml"
            )
        except OSError as e:
            raise ConversionError("READ_ERROR", str(e))
        except Exception as e:
            raise ConversionError("RENDER_ERROR", str(e))

        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_text(html, encoding="utf-8")
        return destination


class ConverterFactory:
    """Create a converter by name and check that it can run."""

    CONVERTERS = {
        ConverterName.PANDOC: PandocConverter,
        ConverterName.MARKDOWN: MarkdownConverter,
    }

    @classmethod
    def create(
        cls, name: ConverterName | str, timeout: float | None = None
    ) -> DocumentConverter:
        """Create the named converter.

        Raises:
            ValueError: If the converter name is unknown
            ConverterUnavailableError: If pandoc is requested but not installed
        """
        try:
            key = ConverterName(name)
        except ValueError:
            supported = ", ".join(c.value for c in ConverterName)
            raise ValueError(f"Unknown converter: {name}. Supported: {supported}")

        if key == ConverterName.PANDOC:
            if shutil.which("pandoc") is None:
                raise ConverterUnavailableError(
                    "pandoc not found on PATH. Install pandoc or use --converter markdown"
                )
            return PandocConverter(timeout=timeout or PandocConverter.DEFAULT_TIMEOUT)

        return cls.CONVERTERS[key]()
