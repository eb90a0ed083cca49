"""Build and pdf command implementations."""

import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn

from repo2ebook.core.builder import EpubBuilder
from repo2ebook.core.pandoc_book import BookFormat, PandocBookWriter
from repo2ebook.core.repository import (
    UNKNOWN_AUTHOR,
    clone_repository,
    default_output_name,
    extract_repo_details,
    is_repository_url,
)
from repo2ebook.core.validator import EpubValidator
from repo2ebook.models.book import BuildResult, Chapter, PackageMetadata
from repo2ebook.models.config import BuildConfig

log = logging.getLogger(__name__)


@dataclass
class ResolvedSource:
    """Local directory to build from, plus names derived from it."""

    path: Path
    name: str
    author: str
    is_remote: bool = False


def resolve_source(source: str, clone_root: Path) -> ResolvedSource:
    """Clone remote repositories; use local directories as they are."""
    if is_repository_url(source):
        name, author = extract_repo_details(source)
        path = clone_repository(source, clone_root / name)
        return ResolvedSource(path=path, name=name, author=author, is_remote=True)

    path = Path(source).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"Source directory not found: {path}")
    if not path.is_dir():
        raise NotADirectoryError(f"Source is not a directory: {path}")
    return ResolvedSource(path=path, name=path.name, author=UNKNOWN_AUTHOR)


def _metadata(resolved: ResolvedSource, title: str | None, author: str | None) -> PackageMetadata:
    return PackageMetadata(
        title=title or resolved.name,
        author=author or resolved.author,
    )


def _print_summary(result: BuildResult, console: Console) -> None:
    lines = [
        f"[green]Packaged {result.chapter_count} chapter(s)[/]",
        "",
        f"[dim]Output:[/] {result.output_path}",
        f"[dim]Images:[/] {result.image_count}",
    ]
    if result.failed_chapters:
        lines.append(f"[yellow]Failed conversions:[/] {len(result.failed_chapters)}")
    if result.placeholder_images:
        lines.append(f"[yellow]Placeholder images:[/] {len(result.placeholder_images)}")

    console.print()
    console.print(Panel("\n".join(lines), title="Complete", border_style="green"))


def execute_build(
    source: str,
    output: Path | None,
    title: str | None,
    author: str | None,
    config: BuildConfig,
    validate: bool,
    quiet: bool,
    console: Console,
) -> BuildResult:
    """Execute the build command."""
    with tempfile.TemporaryDirectory(prefix="repo2ebook-clone-") as clone_root:
        if is_repository_url(source) and not quiet:
            console.print(f"[dim]Cloning {source}...[/]")
        resolved = resolve_source(source, Path(clone_root))
        metadata = _metadata(resolved, title, author)
        output_path = (output or Path(default_output_name(resolved.name, "epub"))).resolve()

        if quiet:
            result = EpubBuilder(config).build(resolved.path, output_path, metadata)
        else:
            with Progress(
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                console=console,
            ) as progress:
                task = progress.add_task("Converting chapters...", total=None)

                def on_progress(completed: int, total: int, chapter: Chapter) -> None:
                    progress.update(
                        task,
                        total=total,
                        completed=completed,
                        description=f"Converting: {chapter.title[:40]}",
                    )

                builder = EpubBuilder(config, on_progress=on_progress)
                result = builder.build(resolved.path, output_path, metadata)

    for warning in result.warnings:
        log.warning(warning)

    if not quiet:
        _print_summary(result, console)

    if validate:
        report = EpubValidator().validate(result.output_path)
        style = "green" if report.passed else "yellow"
        console.print(
            Panel(
                report.output or "(no output)",
                title=f"epubcheck: {'passed' if report.passed else 'issues found'}",
                border_style=style,
            )
        )

    return result


def execute_pandoc_book(
    source: str,
    output: Path | None,
    title: str | None,
    author: str | None,
    book_format: BookFormat,
    config: BuildConfig,
    quiet: bool,
    console: Console,
) -> Path:
    """Execute the pdf command (single pandoc run over the whole tree)."""
    with tempfile.TemporaryDirectory(prefix="repo2ebook-clone-") as clone_root:
        resolved = resolve_source(source, Path(clone_root))
        metadata = _metadata(resolved, title, author)
        output_path = (
            output or Path(default_output_name(resolved.name, book_format))
        ).resolve()

        writer = PandocBookWriter(config)
        if quiet:
            writer.write(resolved.path, output_path, metadata, book_format)
        else:
            with console.status(f"Rendering {book_format.upper()} with pandoc..."):
                writer.write(resolved.path, output_path, metadata, book_format)

    if not quiet:
        console.print(f"[green]Generated {book_format.upper()}:[/] {output_path}")
    return output_path
