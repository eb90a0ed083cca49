"""Per-build working state shared by the pipeline stages."""

import threading
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

from repo2ebook.models.archive import ImageReference

IMAGE_DIR = "images"


class ImageRegistry:
    """Images registered for the archive, deduplicated by local path.

    The first registration of a local path wins; later ones are ignored.
    Lookups by source key let chapters reuse an image another chapter
    already fetched or copied.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_path: dict[str, ImageReference] = {}
        self._by_source: dict[str, ImageReference] = {}

    def register(self, ref: ImageReference, source_key: str | None = None) -> bool:
        """Register an image. Returns False if the path was already taken."""
        with self._lock:
            if source_key is not None:
                self._by_source.setdefault(source_key, ref)
            if ref.local_path in self._by_path:
                return False
            self._by_path[ref.local_path] = ref
            return True

    def lookup_source(self, source_key: str) -> ImageReference | None:
        with self._lock:
            return self._by_source.get(source_key)

    def get(self, local_path: str) -> ImageReference | None:
        with self._lock:
            return self._by_path.get(local_path)

    def images(self) -> list[ImageReference]:
        """Registered images in registration order."""
        with self._lock:
            return list(self._by_path.values())

    def __iter__(self) -> Iterator[ImageReference]:
        return iter(self.images())

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_path)


@dataclass
class BuildContext:
    """Working directories and shared registries of one build."""

    working_dir: Path
    source_root: Path | None = None
    registry: ImageRegistry = field(default_factory=ImageRegistry)

    @property
    def content_dir(self) -> Path:
        """Rendered chapters, laid out as they appear under OEBPS/."""
        return self.working_dir / "OEBPS"

    @property
    def image_dir(self) -> Path:
        return self.content_dir / IMAGE_DIR

    @property
    def markdown_dir(self) -> Path:
        """Intermediate Markdown generated from code files."""
        return self.working_dir / "markdown"

    def prepare(self) -> "BuildContext":
        """Create the working directories."""
        for directory in (self.content_dir, self.image_dir, self.markdown_dir):
            directory.mkdir(parents=True, exist_ok=True)
        return self

    def archive_file(self, local_path: str) -> Path:
        """Working-directory file backing an OEBPS-relative path."""
        return self.content_dir / local_path
