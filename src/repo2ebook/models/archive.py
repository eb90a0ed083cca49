"""Data models for archive contents."""

from enum import Enum

from pydantic import BaseModel, ConfigDict


class ImageStatus(str, Enum):
    """How an image reference was made resolvable inside the archive."""

    FETCHED = "fetched"
    COPIED = "copied"
    PLACEHOLDER = "placeholder"


class ImageReference(BaseModel):
    """An image found in a chapter and its archive-local counterpart."""

    model_config = ConfigDict(frozen=True)

    original_src: str
    local_path: str  # Relative to OEBPS/, e.g. "images/logo.png"
    media_type: str
    status: ImageStatus


class ManifestEntry(BaseModel):
    """Single <item> of the package manifest."""

    id: str
    href: str
    media_type: str
    properties: str | None = None


class ValidationReport(BaseModel):
    """Outcome of running an external validator on an archive."""

    path: str
    passed: bool
    returncode: int
    output: str = ""
