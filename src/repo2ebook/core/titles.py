"""Turn relative file paths into chapter titles and archive paths."""

import posixpath
import re

TITLE_SEPARATOR = " > "


def chapter_title(relative_path: str) -> str:
    """Build a display title from a path relative to the source root.

    Examples:
        docs/getting_started.md -> docs > getting started
        src\\lib\\main.rs -> src > lib > main
    """
    normalized = relative_path.replace("\\", "/").strip("/")
    head, _, name = normalized.rpartition("/")
    stem, dot, _ = name.rpartition(".")
    # Dotfiles like ".editorconfig" keep their name
    if dot and stem:
        name = stem
    parts = [p for p in head.split("/") if p] + [name]
    return TITLE_SEPARATOR.join(parts).replace("_", " ")


def chapter_href(relative_path: str) -> str:
    """Archive path of the rendered chapter, relative to OEBPS/."""
    normalized = relative_path.replace("\\", "/").strip("/")
    head, _, name = normalized.rpartition("/")
    if name.lower().endswith(".md"):
        name = name[:-3]
    # Keep code extensions so index.js and index.ts do not collide
    name = re.sub(r"[^\w.-]", "_", name).lstrip(".") or "chapter"
    return posixpath.join(head, f"{name}.xhtml") if head else f"{name}.xhtml"
