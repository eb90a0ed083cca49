"""Make every image reference in a chapter resolvable inside the archive.

Remote images are downloaded, local ones copied into the build's image
directory, and anything that cannot be resolved is replaced with a fixed
placeholder graphic. All references of one chapter are resolved
concurrently and then rewritten in a single pass.
"""

import hashlib
import logging
import os
import posixpath
import re
import shutil
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from urllib.parse import unquote, urljoin, urlparse

import requests
from bs4 import BeautifulSoup

from repo2ebook.core.context import IMAGE_DIR, BuildContext
from repo2ebook.core.media_types import (
    MEDIA_TYPES,
    extension_for_content_type,
    media_type_for,
)
from repo2ebook.models.archive import ImageReference, ImageStatus
from repo2ebook.models.config import BuildConfig

log = logging.getLogger(__name__)

PLACEHOLDER_NAME = "placeholder.svg"
PLACEHOLDER_PATH = f"{IMAGE_DIR}/{PLACEHOLDER_NAME}"
PLACEHOLDER_SVG = """<?xml version="1.0" encoding="UTF-8"?>
<svg xmlns="http://www.w3.org/2000/svg" width="320" height="180" viewBox="0 0 320 180">
  <rect width="320" height="180" fill="#eeeeee" stroke="#999999" stroke-width="2"/>
  <path d="M110 125 L150 80 L180 110 L200 92 L230 125 Z" fill="#bbbbbb"/>
  <circle cx="205" cy="65" r="12" fill="#bbbbbb"/>
  <text x="160" y="155" font-family="sans-serif" font-size="14" fill="#666666" text-anchor="middle">Image unavailable</text>
</svg>
"""

DEFAULT_EXTENSION = ".jpg"
CHUNK_SIZE = 8192
MAX_STEM_LENGTH = 60

MD_IMAGE_PATTERN = re.compile(
    r"(?P<head>!\[[^\]]*\]\(\s*<?)(?P<src>[^)\s>]+)(?P<tail>>?(?:\s+\"[^\"]*\")?\s*\))"
)
HTML_IMG_PATTERN = re.compile(
    r"(?P<head><img\b[^>]*?\bsrc\s*=\s*[\"'])(?P<src>[^\"']+)(?P<tail>[\"'])",
    re.IGNORECASE,
)
FENCE_PATTERN = re.compile(r"^\s{0,3}(?P<fence>`{3,}|~{3,})")


class ImageFetchError(Exception):
    """An image could not be fetched or copied."""


def is_remote(src: str) -> bool:
    parsed = urlparse(src)
    if not parsed.scheme:
        # Protocol-relative, e.g. //cdn.example.com/a.png
        return bool(parsed.netloc)
    return parsed.scheme in ("http", "https")


def absolute_url(src: str) -> str:
    """Remote reference with an explicit scheme; protocol-relative means https."""
    return f"https:{src}" if src.startswith("//") else src


def _is_skipped(src: str) -> bool:
    """True for references that are not files to localize (data:, mailto:)."""
    if not src:
        return True
    scheme = urlparse(src).scheme.lower()
    # Single letters are Windows drive letters, not schemes
    return len(scheme) > 1 and scheme not in ("http", "https", "file")


def _sanitize(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "_", value).strip("._")


def _short_hash(value: str) -> str:
    return hashlib.sha1(value.encode("utf-8")).hexdigest()[:8]


def remote_file_stem(url: str) -> str:
    """File name (without extension) for a downloaded image.

    Derived from the URL path and query, with a short hash of the full URL
    so different URLs never share a file.
    """
    parsed = urlparse(url)
    path = unquote(parsed.path)
    stem, ext = posixpath.splitext(path)
    if ext.lower() not in MEDIA_TYPES:
        stem = path
    base = _sanitize(f"{parsed.netloc}{stem}")
    if parsed.query:
        base = f"{base}_{_sanitize(parsed.query)}"
    base = base[:MAX_STEM_LENGTH].strip("._") or "image"
    return f"{base}-{_short_hash(url)}"


def relative_href(local_path: str, chapter_href: str) -> str:
    """Path of an archive file as seen from a chapter document."""
    start = posixpath.dirname(chapter_href) or "."
    return posixpath.relpath(local_path, start)


class ImageLocalizer:
    """Resolve chapter images into the build's image directory."""

    def __init__(
        self,
        context: BuildContext,
        config: BuildConfig | None = None,
        session: requests.Session | None = None,
    ):
        self.context = context
        self.config = config or BuildConfig()
        self.session = session or requests.Session()
        self._placeholder_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Content rewriting
    # ------------------------------------------------------------------

    def localize_html(
        self, html: str, source_dir: Path, chapter_href: str = ""
    ) -> tuple[str, list[ImageReference]]:
        """Rewrite <img src> references of an HTML fragment.

        Returns the serialized fragment and the references it now points to.
        """
        soup = BeautifulSoup(html, "html.parser")
        tags = [img for img in soup.find_all("img") if img.get("src")]
        sources = [tag["src"] for tag in tags if not _is_skipped(tag["src"])]
        resolved = self.resolve_all(sources, source_dir)

        for tag in tags:
            ref = resolved.get(tag["src"])
            if ref is not None:
                tag["src"] = relative_href(ref.local_path, chapter_href)
            if tag.get("alt") is None:
                tag["alt"] = ""

        return str(soup), list(resolved.values())

    def localize_markdown(
        self, text: str, source_dir: Path, chapter_href: str = ""
    ) -> tuple[str, list[ImageReference]]:
        """Rewrite image references of Markdown text outside code fences."""
        lines = text.splitlines(keepends=True)
        prose = self._prose_line_numbers(lines)

        sources: list[str] = []
        for number in prose:
            for pattern in (MD_IMAGE_PATTERN, HTML_IMG_PATTERN):
                for match in pattern.finditer(lines[number]):
                    src = match.group("src")
                    if not _is_skipped(src):
                        sources.append(src)

        resolved = self.resolve_all(sources, source_dir)

        def substitute(match: re.Match) -> str:
            ref = resolved.get(match.group("src"))
            if ref is None:
                return match.group(0)
            new_src = relative_href(ref.local_path, chapter_href)
            return f"{match.group('head')}{new_src}{match.group('tail')}"

        for number in prose:
            line = MD_IMAGE_PATTERN.sub(substitute, lines[number])
            lines[number] = HTML_IMG_PATTERN.sub(substitute, line)

        return "".join(lines), list(resolved.values())

    @staticmethod
    def _prose_line_numbers(lines: list[str]) -> list[int]:
        """Indices of lines that are not inside a fenced code block."""
        prose: list[int] = []
        open_fence: str | None = None
        for number, line in enumerate(lines):
            match = FENCE_PATTERN.match(line)
            if open_fence is None:
                if match:
                    open_fence = match.group("fence")
                    continue
                prose.append(number)
            elif (
                match
                and match.group("fence")[0] == open_fence[0]
                and len(match.group("fence")) >= len(open_fence)
                and not line.strip()[len(match.group("fence")):].strip()
            ):
                open_fence = None
        return prose

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_all(
        self, sources: list[str], source_dir: Path
    ) -> dict[str, ImageReference]:
        """Resolve every distinct source concurrently.

        A failing source never affects its siblings: each one settles to
        either its localized reference or the placeholder.
        """
        unique = list(dict.fromkeys(sources))
        if not unique:
            return {}

        workers = min(self.config.image_workers, len(unique))
        resolved: dict[str, ImageReference] = {}
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                src: executor.submit(self.resolve, src, source_dir) for src in unique
            }
            for src, future in futures.items():
                try:
                    resolved[src] = future.result()
                except Exception as e:
                    log.warning(f"Unexpected error resolving image {src}: {e}")
                    resolved[src] = self.placeholder(src)
        return resolved

    def resolve(self, src: str, source_dir: Path) -> ImageReference:
        """Resolve a single reference, falling back to the placeholder."""
        try:
            if is_remote(src):
                return self.fetch_remote(absolute_url(src))
            return self.copy_local(src, source_dir)
        except (ImageFetchError, requests.RequestException, OSError) as e:
            log.warning(f"Using placeholder for image {src}: {e}")
            return self.placeholder(src)

    def fetch_remote(self, url: str) -> ImageReference:
        """Download a remote image, following at most max_redirects redirects."""
        cached = self.context.registry.lookup_source(url)
        if cached is not None:
            return cached.model_copy(update={"original_src": url})

        current = url
        for _ in range(self.config.max_redirects + 1):
            response = self.session.get(
                current,
                headers={"User-Agent": self.config.user_agent},
                timeout=self.config.image_timeout,
                stream=True,
                allow_redirects=False,
            )
            try:
                status = response.status_code
                if 300 <= status < 400:
                    location = response.headers.get("Location")
                    if not location:
                        raise ImageFetchError(f"HTTP {status} without Location header")
                    current = urljoin(current, location)
                    log.debug(f"Redirect {status}: {url} -> {current}")
                    continue
                if not 200 <= status < 300:
                    raise ImageFetchError(f"HTTP {status}")

                extension = (
                    extension_for_content_type(response.headers.get("Content-Type"))
                    or self._url_extension(url)
                    or DEFAULT_EXTENSION
                )
                local_path = f"{IMAGE_DIR}/{remote_file_stem(url)}{extension}"
                ref = ImageReference(
                    original_src=url,
                    local_path=local_path,
                    media_type=media_type_for(extension),
                    status=ImageStatus.FETCHED,
                )
                if self.context.registry.get(local_path) is None:
                    self._write_stream(response, self.context.archive_file(local_path))
                self.context.registry.register(ref, source_key=url)
                return ref
            finally:
                response.close()

        raise ImageFetchError(
            f"Too many redirects (more than {self.config.max_redirects})"
        )

    def copy_local(self, src: str, source_dir: Path) -> ImageReference:
        """Copy a local image next to the other archive images."""
        parsed = urlparse(src)
        raw_path = unquote(parsed.path if parsed.scheme == "file" else src.split("#")[0].split("?")[0])
        resolved_path = (source_dir / raw_path).resolve()
        source_key = str(resolved_path)

        cached = self.context.registry.lookup_source(source_key)
        if cached is not None:
            return cached.model_copy(update={"original_src": src})

        if not resolved_path.is_file():
            raise ImageFetchError(f"Local image not found: {resolved_path}")

        local_path = f"{IMAGE_DIR}/{self._local_file_name(resolved_path)}"
        ref = ImageReference(
            original_src=src,
            local_path=local_path,
            media_type=media_type_for(resolved_path.suffix),
            status=ImageStatus.COPIED,
        )
        if self.context.registry.get(local_path) is None:
            destination = self.context.archive_file(local_path)
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(resolved_path, destination)
        self.context.registry.register(ref, source_key=source_key)
        return ref

    def placeholder(self, src: str) -> ImageReference:
        """Reference to the shared placeholder graphic, created on first use."""
        ref = ImageReference(
            original_src=src,
            local_path=PLACEHOLDER_PATH,
            media_type=media_type_for(PLACEHOLDER_NAME),
            status=ImageStatus.PLACEHOLDER,
        )
        with self._placeholder_lock:
            if self.context.registry.get(PLACEHOLDER_PATH) is None:
                path = self.context.archive_file(PLACEHOLDER_PATH)
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(PLACEHOLDER_SVG, encoding="utf-8")
                self.context.registry.register(ref)
        return ref

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _url_extension(url: str) -> str | None:
        ext = posixpath.splitext(urlparse(url).path)[1].lower()
        return ext if ext in MEDIA_TYPES else None

    def _local_file_name(self, path: Path) -> str:
        """Readable name plus a hash of the source path.

        The hash keeps files whose sanitized names coincide apart, and keeps
        copies clear of the reserved cover and placeholder names.
        """
        key = str(path)
        stem = path.stem
        root = self.context.source_root
        if root is not None:
            try:
                key = path.relative_to(root.resolve()).as_posix()
                stem = posixpath.splitext(key)[0].replace("/", "_")
            except ValueError:
                pass
        return f"{_sanitize(stem) or 'image'}-{_short_hash(key)}{path.suffix.lower()}"

    @staticmethod
    def _write_stream(response: requests.Response, destination: Path) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        # Write to a sibling temp file so concurrent writers never interleave
        fd, tmp_name = tempfile.mkstemp(dir=destination.parent, suffix=".part")
        try:
            with os.fdopen(fd, "wb") as f:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
            os.replace(tmp_name, destination)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
