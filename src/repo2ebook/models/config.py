"""Runtime configuration for a build."""

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

DEFAULT_CODE_EXTENSIONS = [
    ".js",
    ".cjs",
    ".ts",
    ".py",
    ".jsx",
    ".tsx",
    ".rs",
    ".vue",
    ".editorconfig",
]

DEFAULT_SKIP_DIRS = [
    "node_modules",
    "dist",
    "build",
    "coverage",
    "test",
    "tests",
    "__tests__",
    "__mocks__",
    "example",
    "examples",
    "fixtures",
    "script",
    "scripts",
]

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0 Safari/537.36 repo2ebook"
)


class SourceMode(str, Enum):
    """How files in the source tree become chapters."""

    MARKDOWN = "markdown"  # Only .md files
    CODE = "code"  # Code files wrapped in fences, plus .md files


class ConverterName(str, Enum):
    """Available Markdown to HTML converters."""

    PANDOC = "pandoc"
    MARKDOWN = "markdown"


class BuildConfig(BaseModel):
    """Options shared by the build pipeline."""

    mode: SourceMode = SourceMode.MARKDOWN
    converter: ConverterName = ConverterName.PANDOC
    max_workers: int = Field(default=4, ge=1)
    image_workers: int = Field(default=8, ge=1)
    image_timeout: float = Field(default=10.0, gt=0)
    max_redirects: int = Field(default=5, ge=0)
    converter_timeout: float = Field(default=120.0, gt=0)
    user_agent: str = DEFAULT_USER_AGENT
    code_extensions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CODE_EXTENSIONS)
    )
    skip_dirs: list[str] = Field(default_factory=lambda: list(DEFAULT_SKIP_DIRS))
    cover_image: Path | None = None
    localize_images: bool = True
