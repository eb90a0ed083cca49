"""Assemble the EPUB package: structural documents plus content, in one ZIP."""

import html
import logging
import os
import tempfile
import zipfile
from collections.abc import Iterable, Sequence
from pathlib import Path
from urllib.parse import quote

from bs4 import BeautifulSoup
from lxml import etree

from repo2ebook.core.context import IMAGE_DIR, BuildContext
from repo2ebook.models.archive import ImageReference, ManifestEntry
from repo2ebook.models.book import Chapter, PackageMetadata, RenderedChapter

log = logging.getLogger(__name__)

MIMETYPE = "application/epub+zip"
PACKAGE_DIR = "OEBPS"
CONTENT_OPF = "content.opf"
TOC_NCX = "toc.ncx"
TOC_XHTML = "toc.xhtml"
COVER_PATH = f"{IMAGE_DIR}/cover.jpg"

XHTML_MEDIA_TYPE = "application/xhtml+xml"
NCX_MEDIA_TYPE = "application/x-dtbncx+xml"
COVER_MEDIA_TYPE = "image/jpeg"

OPF_NS = "http://www.idpf.org/2007/opf"
DC_NS = "http://purl.org/dc/elements/1.1/"
NCX_NS = "http://www.daisy.org/z3986/2005/ncx/"
XHTML_NS = "http://www.w3.org/1999/xhtml"
EPUB_NS = "http://www.idpf.org/2007/ops"

NCX_DOCTYPE = (
    '<!DOCTYPE ncx PUBLIC "-//NISO//DTD ncx 2005-1//EN" '
    '"http://www.daisy.org/z3986/2005/ncx-2005-1.dtd">'
)
HTML_DOCTYPE = "<!DOCTYPE html>"

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""

CHAPTER_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE html>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops" lang="{language}" xml:lang="{language}">
<head>
  <meta charset="utf-8"/>
  <title>{title}</title>
</head>
<body>
{body}
</body>
</html>
"""

FALLBACK_BODY = """<h1>{title}</h1>
<p>This chapter could not be converted.</p>
<pre>{error}</pre>"""


class ArchiveError(Exception):
    """The package could not be generated or written."""


def xhtml_fragment(fragment: str) -> str:
    """Re-serialize an HTML fragment so void elements are self-closed."""
    return str(BeautifulSoup(fragment, "html.parser"))


def fallback_body(title: str, error: str) -> str:
    """Body used in place of a chapter whose conversion failed."""
    return FALLBACK_BODY.format(title=html.escape(title), error=html.escape(error))


def _href(path: str) -> str:
    return quote(path, safe="/")


def _serialize(root: etree._Element, doctype: str | None = None) -> str:
    return etree.tostring(
        root,
        xml_declaration=True,
        encoding="UTF-8",
        pretty_print=True,
        doctype=doctype,
    ).decode("utf-8")


class ArchiveAssembler:
    """Generate content.opf, toc.ncx and toc.xhtml and pack the archive."""

    def __init__(self, context: BuildContext | None = None):
        self.context = context

    # ------------------------------------------------------------------
    # Manifest
    # ------------------------------------------------------------------

    def manifest_entries(
        self,
        chapters: Sequence[Chapter],
        images: Iterable[ImageReference] = (),
        has_cover: bool = False,
    ) -> list[ManifestEntry]:
        """Manifest items in package order: chapters, cover, images, nav."""
        entries = [
            ManifestEntry(
                id=f"item{i}", href=chapter.href, media_type=XHTML_MEDIA_TYPE
            )
            for i, chapter in enumerate(chapters, 1)
        ]
        if has_cover:
            entries.append(
                ManifestEntry(
                    id="cover-image",
                    href=COVER_PATH,
                    media_type=COVER_MEDIA_TYPE,
                    properties="cover-image",
                )
            )

        seen: set[str] = set()
        for image in images:
            if image.local_path in seen or (has_cover and image.local_path == COVER_PATH):
                continue
            seen.add(image.local_path)
            entries.append(
                ManifestEntry(
                    id=f"img{len(seen)}",
                    href=image.local_path,
                    media_type=image.media_type,
                )
            )

        entries.append(ManifestEntry(id="ncx", href=TOC_NCX, media_type=NCX_MEDIA_TYPE))
        entries.append(
            ManifestEntry(
                id="nav", href=TOC_XHTML, media_type=XHTML_MEDIA_TYPE, properties="nav"
            )
        )
        return entries

    # ------------------------------------------------------------------
    # Structural documents
    # ------------------------------------------------------------------

    def render_content_opf(
        self,
        metadata: PackageMetadata,
        chapters: Sequence[Chapter],
        images: Iterable[ImageReference] = (),
        has_cover: bool = False,
    ) -> str:
        """Package document: metadata, manifest and spine."""
        package = etree.Element(
            f"{{{OPF_NS}}}package",
            nsmap={None: OPF_NS},
            attrib={"version": "3.0", "unique-identifier": "bookid"},
        )
        meta = etree.SubElement(package, f"{{{OPF_NS}}}metadata", nsmap={"dc": DC_NS})
        etree.SubElement(meta, f"{{{DC_NS}}}title").text = metadata.title
        etree.SubElement(meta, f"{{{DC_NS}}}creator").text = metadata.author
        identifier = etree.SubElement(meta, f"{{{DC_NS}}}identifier", id="bookid")
        identifier.text = metadata.identifier
        etree.SubElement(meta, f"{{{DC_NS}}}language").text = metadata.language
        modified = etree.SubElement(
            meta, f"{{{OPF_NS}}}meta", property="dcterms:modified"
        )
        modified.text = metadata.modified_timestamp
        if has_cover:
            etree.SubElement(
                meta, f"{{{OPF_NS}}}meta", name="cover", content="cover-image"
            )

        manifest = etree.SubElement(package, f"{{{OPF_NS}}}manifest")
        for entry in self.manifest_entries(chapters, images, has_cover):
            item = etree.SubElement(manifest, f"{{{OPF_NS}}}item")
            item.set("id", entry.id)
            item.set("href", _href(entry.href))
            item.set("media-type", entry.media_type)
            if entry.properties:
                item.set("properties", entry.properties)

        spine = etree.SubElement(package, f"{{{OPF_NS}}}spine", toc="ncx")
        for i, _ in enumerate(chapters, 1):
            etree.SubElement(spine, f"{{{OPF_NS}}}itemref", idref=f"item{i}")

        return _serialize(package)

    def render_toc_ncx(
        self, metadata: PackageMetadata, chapters: Sequence[Chapter]
    ) -> str:
        """Legacy NCX navigation, one navPoint per chapter in spine order."""
        ncx = etree.Element(
            f"{{{NCX_NS}}}ncx", nsmap={None: NCX_NS}, version="2005-1"
        )
        head = etree.SubElement(ncx, f"{{{NCX_NS}}}head")
        for name, content in (
            ("dtb:uid", metadata.identifier),
            ("dtb:depth", "1"),
            ("dtb:totalPageCount", "0"),
            ("dtb:maxPageNumber", "0"),
        ):
            etree.SubElement(head, f"{{{NCX_NS}}}meta", name=name, content=content)

        doc_title = etree.SubElement(ncx, f"{{{NCX_NS}}}docTitle")
        etree.SubElement(doc_title, f"{{{NCX_NS}}}text").text = metadata.title

        nav_map = etree.SubElement(ncx, f"{{{NCX_NS}}}navMap")
        for i, chapter in enumerate(chapters, 1):
            nav_point = etree.SubElement(
                nav_map,
                f"{{{NCX_NS}}}navPoint",
                id=f"navPoint-{i}",
                playOrder=str(i),
            )
            label = etree.SubElement(nav_point, f"{{{NCX_NS}}}navLabel")
            etree.SubElement(label, f"{{{NCX_NS}}}text").text = chapter.title
            etree.SubElement(nav_point, f"{{{NCX_NS}}}content", src=_href(chapter.href))

        return _serialize(ncx, doctype=NCX_DOCTYPE)

    def render_toc_xhtml(
        self, metadata: PackageMetadata, chapters: Sequence[Chapter]
    ) -> str:
        """EPUB 3 navigation document."""
        root = etree.Element(
            f"{{{XHTML_NS}}}html", nsmap={None: XHTML_NS, "epub": EPUB_NS}
        )
        root.set("lang", metadata.language)
        head = etree.SubElement(root, f"{{{XHTML_NS}}}head")
        etree.SubElement(head, f"{{{XHTML_NS}}}title").text = metadata.title
        body = etree.SubElement(root, f"{{{XHTML_NS}}}body")
        nav = etree.SubElement(body, f"{{{XHTML_NS}}}nav", id="toc")
        nav.set(f"{{{EPUB_NS}}}type", "toc")
        etree.SubElement(nav, f"{{{XHTML_NS}}}h1").text = "Contents"
        ol = etree.SubElement(nav, f"{{{XHTML_NS}}}ol")
        for chapter in chapters:
            li = etree.SubElement(ol, f"{{{XHTML_NS}}}li")
            link = etree.SubElement(li, f"{{{XHTML_NS}}}a", href=_href(chapter.href))
            link.text = chapter.title

        return _serialize(root, doctype=HTML_DOCTYPE)

    def render_chapter(self, rendered: RenderedChapter, language: str = "en") -> str:
        """Wrap a chapter body in a complete XHTML document."""
        return CHAPTER_TEMPLATE.format(
            language=html.escape(language),
            title=html.escape(rendered.chapter.title),
            body=rendered.body,
        )

    # ------------------------------------------------------------------
    # Packaging
    # ------------------------------------------------------------------

    def assemble(
        self,
        metadata: PackageMetadata,
        rendered: Sequence[RenderedChapter],
        images: Iterable[ImageReference] = (),
        cover_image: Path | None = None,
    ) -> list[tuple[str, bytes]]:
        """Render every archive entry in memory, mimetype first.

        Raises:
            ArchiveError: If any document or resource cannot be produced
        """
        chapters = [r.chapter for r in rendered]
        has_cover = cover_image is not None
        images = [
            image
            for image in images
            if not (has_cover and image.local_path == COVER_PATH)
        ]

        try:
            entries: list[tuple[str, bytes]] = [
                ("mimetype", MIMETYPE.encode("ascii")),
                ("META-INF/container.xml", CONTAINER_XML.encode("utf-8")),
                (
                    f"{PACKAGE_DIR}/{CONTENT_OPF}",
                    self.render_content_opf(
                        metadata, chapters, images, has_cover
                    ).encode("utf-8"),
                ),
                (
                    f"{PACKAGE_DIR}/{TOC_NCX}",
                    self.render_toc_ncx(metadata, chapters).encode("utf-8"),
                ),
                (
                    f"{PACKAGE_DIR}/{TOC_XHTML}",
                    self.render_toc_xhtml(metadata, chapters).encode("utf-8"),
                ),
            ]
            for item in rendered:
                entries.append(
                    (
                        f"{PACKAGE_DIR}/{item.chapter.href}",
                        self.render_chapter(item, metadata.language).encode("utf-8"),
                    )
                )
            if cover_image is not None:
                entries.append((f"{PACKAGE_DIR}/{COVER_PATH}", cover_image.read_bytes()))
            written = set()
            for image in images:
                if image.local_path in written:
                    continue
                written.add(image.local_path)
                entries.append(
                    (f"{PACKAGE_DIR}/{image.local_path}", self._image_bytes(image))
                )
        except ArchiveError:
            raise
        except Exception as e:
            raise ArchiveError(f"Failed to generate package documents: {e}") from e

        return entries

    def _image_bytes(self, image: ImageReference) -> bytes:
        if self.context is None:
            raise ArchiveError(f"No build context to read image {image.local_path}")
        path = self.context.archive_file(image.local_path)
        try:
            return path.read_bytes()
        except OSError as e:
            raise ArchiveError(f"Missing image file {path}: {e}") from e

    def write(
        self,
        output_path: Path,
        metadata: PackageMetadata,
        rendered: Sequence[RenderedChapter],
        images: Iterable[ImageReference] = (),
        cover_image: Path | None = None,
    ) -> Path:
        """Write the archive, replacing output_path only on success."""
        entries = self.assemble(metadata, rendered, images, cover_image)

        output_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=output_path.parent, prefix=f".{output_path.name}.", suffix=".part"
        )
        os.close(fd)
        try:
            with zipfile.ZipFile(tmp_name, "w", zipfile.ZIP_DEFLATED) as zf:
                for name, data in entries:
                    if name == "mimetype":
                        zf.writestr(name, data, compress_type=zipfile.ZIP_STORED)
                    else:
                        zf.writestr(name, data)
            os.replace(tmp_name, output_path)
        except Exception as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise ArchiveError(f"Failed to write archive {output_path}: {e}") from e

        log.info(f"Wrote {len(entries)} entries to {output_path}")
        return output_path
