"""Main CLI application."""

import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from repo2ebook.core.repository import is_repository_url
from repo2ebook.models.config import BuildConfig, ConverterName, SourceMode

app = typer.Typer(
    name="repo2ebook",
    help="Convert a source repository or a tree of Markdown files into an ebook.",
    add_completion=False,
)

console = Console()


def setup_logging(verbose: bool) -> None:
    """Route library logging through rich."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def _resolve_mode(source: str, mode: SourceMode | None) -> SourceMode:
    if mode is not None:
        return mode
    return SourceMode.CODE if is_repository_url(source) else SourceMode.MARKDOWN


@app.callback()
def main(
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Show informational log messages",
        ),
    ] = False,
) -> None:
    """Convert a source repository or a tree of Markdown files into an ebook."""
    setup_logging(verbose)


@app.command()
def build(
    source: Annotated[
        str,
        typer.Argument(
            help="Local directory or git repository URL",
            envvar="REPO_URL",
        ),
    ],
    output: Annotated[
        Optional[Path],
        typer.Option(
            "--output",
            "-o",
            help="Output EPUB path (default: {name}_{timestamp}.epub)",
        ),
    ] = None,
    title: Annotated[
        Optional[str],
        typer.Option("--title", "-t", help="Book title (default: source name)"),
    ] = None,
    author: Annotated[
        Optional[str],
        typer.Option("--author", "-a", help="Book author (default: repository owner)"),
    ] = None,
    mode: Annotated[
        Optional[SourceMode],
        typer.Option(
            "--mode",
            "-m",
            help="markdown: only .md files; code: source files as fenced code "
            "(default: code for URLs, markdown for directories)",
        ),
    ] = None,
    converter: Annotated[
        ConverterName,
        typer.Option(
            "--converter",
            "-c",
            help="Markdown to HTML converter",
            envvar="REPO2EBOOK_CONVERTER",
        ),
    ] = ConverterName.PANDOC,
    workers: Annotated[
        int,
        typer.Option(
            "--workers",
            "-j",
            help="Chapters converted in parallel",
            min=1,
            envvar="REPO2EBOOK_WORKERS",
        ),
    ] = 4,
    image_timeout: Annotated[
        float,
        typer.Option("--image-timeout", help="Seconds to wait for each remote image", min=0.1),
    ] = 10.0,
    max_redirects: Annotated[
        int,
        typer.Option("--max-redirects", help="Redirects followed per remote image", min=0),
    ] = 5,
    converter_timeout: Annotated[
        float,
        typer.Option("--converter-timeout", help="Seconds allowed per pandoc run", min=1),
    ] = 120.0,
    cover: Annotated[
        Optional[Path],
        typer.Option(
            "--cover",
            help="Cover image (JPEG)",
            exists=True,
            file_okay=True,
            dir_okay=False,
            resolve_path=True,
        ),
    ] = None,
    no_images: Annotated[
        bool,
        typer.Option("--no-images", help="Leave image references untouched"),
    ] = False,
    validate: Annotated[
        bool,
        typer.Option("--validate", help="Run epubcheck on the result"),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Suppress progress output"),
    ] = False,
) -> None:
    """Package a repository or Markdown tree as an EPUB."""
    config = BuildConfig(
        mode=_resolve_mode(source, mode),
        converter=converter,
        max_workers=workers,
        image_timeout=image_timeout,
        max_redirects=max_redirects,
        converter_timeout=converter_timeout,
        cover_image=cover,
        localize_images=not no_images,
    )

    try:
        from repo2ebook.commands.build import execute_build

        execute_build(
            source=source,
            output=output,
            title=title,
            author=author,
            config=config,
            validate=validate,
            quiet=quiet,
            console=console,
        )
    except Exception as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1)


@app.command()
def pdf(
    source: Annotated[
        str,
        typer.Argument(
            help="Local directory or git repository URL",
            envvar="REPO_URL",
        ),
    ],
    output: Annotated[
        Optional[Path],
        typer.Option(
            "--output",
            "-o",
            help="Output path (default: {name}_{timestamp}.pdf)",
        ),
    ] = None,
    title: Annotated[
        Optional[str],
        typer.Option("--title", "-t", help="Book title (default: source name)"),
    ] = None,
    author: Annotated[
        Optional[str],
        typer.Option("--author", "-a", help="Book author (default: repository owner)"),
    ] = None,
    mode: Annotated[
        Optional[SourceMode],
        typer.Option(
            "--mode",
            "-m",
            help="markdown or code (default: code for URLs, markdown for directories)",
        ),
    ] = None,
    epub: Annotated[
        bool,
        typer.Option("--epub", help="Let pandoc produce an EPUB instead of a PDF"),
    ] = False,
    no_images: Annotated[
        bool,
        typer.Option("--no-images", help="Leave image references untouched"),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Suppress progress output"),
    ] = False,
) -> None:
    """Render the whole tree as one document with pandoc (PDF by default)."""
    config = BuildConfig(
        mode=_resolve_mode(source, mode),
        localize_images=not no_images,
    )

    try:
        from repo2ebook.commands.build import execute_pandoc_book

        execute_pandoc_book(
            source=source,
            output=output,
            title=title,
            author=author,
            book_format="epub" if epub else "pdf",
            config=config,
            quiet=quiet,
            console=console,
        )
    except Exception as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1)


@app.command()
def info(
    epub_path: Annotated[
        Path,
        typer.Argument(
            help="Path to an EPUB file",
            exists=True,
            file_okay=True,
            dir_okay=False,
            resolve_path=True,
        ),
    ],
) -> None:
    """Display EPUB metadata and table of contents."""
    try:
        from repo2ebook.commands.info import execute_info

        execute_info(epub_path, console)
    except Exception as e:
        console.print(f"[red]Error reading file: {e}[/]")
        raise typer.Exit(1)


@app.command()
def validate(
    epub_path: Annotated[
        Path,
        typer.Argument(
            help="Path to an EPUB file",
            exists=True,
            file_okay=True,
            dir_okay=False,
            resolve_path=True,
        ),
    ],
) -> None:
    """Check an EPUB with epubcheck."""
    try:
        from repo2ebook.commands.info import execute_validate

        report = execute_validate(epub_path, console)
    except Exception as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1)

    if not report.passed:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
