"""Info and validate command implementations."""

from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from repo2ebook.core.epub_reader import EpubReader
from repo2ebook.core.validator import EpubValidator
from repo2ebook.models.archive import ValidationReport
from repo2ebook.models.epub import TOCEntry


def _navigation_tree(toc: list[TOCEntry]) -> Tree:
    """Nested navigation as a rich tree."""
    tree = Tree("[bold]Navigation[/]")
    pending = [(tree, entry) for entry in toc]
    while pending:
        parent, entry = pending.pop(0)
        node = parent.add(f"{escape(entry.title)} [dim]{escape(entry.href)}[/]")
        pending.extend((node, child) for child in entry.children)
    return tree


def execute_info(epub_path: Path, console: Console) -> None:
    """Display EPUB metadata and its chapters in reading order."""
    parsed = EpubReader(epub_path).parse()

    info_lines = [
        f"[bold]{parsed.metadata.title}[/]",
        "",
        f"[dim]Author(s):[/] {', '.join(parsed.metadata.authors) or 'Unknown'}",
        f"[dim]Language:[/] {parsed.metadata.language or 'Unknown'}",
        f"[dim]Identifier:[/] {parsed.metadata.identifier or 'Unknown'}",
        f"[dim]Chapters:[/] {len(parsed.chapters)}",
        f"[dim]Words:[/] {parsed.total_words:,}",
        f"[dim]Images:[/] {parsed.image_count}",
    ]

    console.print()
    console.print(
        Panel("\n".join(info_lines), title="Book Information", border_style="green")
    )

    console.print()
    table = Table(title="Table of Contents", show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", width=4)
    table.add_column("Title", style="white")
    table.add_column("File", style="dim")
    table.add_column("Words", justify="right", style="green")
    table.add_column("Images", justify="center")

    for number, chapter in enumerate(parsed.chapters, 1):
        table.add_row(
            str(number),
            chapter.title,
            chapter.file_name,
            f"{chapter.word_count:,}",
            "yes" if chapter.has_images else "",
        )

    console.print(table)

    if any(entry.children for entry in parsed.toc):
        console.print()
        console.print(_navigation_tree(parsed.toc))
    console.print()


def execute_validate(epub_path: Path, console: Console) -> ValidationReport:
    """Run epubcheck and show its report."""
    report = EpubValidator().validate(epub_path)
    console.print(
        Panel(
            report.output or "(no output)",
            title=f"epubcheck: {'passed' if report.passed else 'issues found'}",
            border_style="green" if report.passed else "red",
        )
    )
    return report
