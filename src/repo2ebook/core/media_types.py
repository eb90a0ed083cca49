"""Map file extensions to manifest media types."""

DEFAULT_MEDIA_TYPE = "application/octet-stream"

MEDIA_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
}

# Preferred extension for each media type
EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/pjpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/svg+xml": ".svg",
}


def _normalize_extension(value: str) -> str:
    value = value.strip().lower()
    if "/" in value or "\\" in value:
        value = value.replace("\\", "/").rsplit("/", 1)[-1]
    if "." in value[1:]:
        value = value[value.rindex("."):]
    if value and not value.startswith("."):
        value = f".{value}"
    return value


def media_type_for(extension: str) -> str:
    """Resolve the media type of an extension or file name.

    Accepts ".png", "png" or "logo.PNG". Unknown values resolve to
    application/octet-stream.
    """
    return MEDIA_TYPES.get(_normalize_extension(extension), DEFAULT_MEDIA_TYPE)


def extension_for_content_type(content_type: str | None) -> str | None:
    """Return the file extension for a Content-Type header value, if known."""
    if not content_type:
        return None
    mime = content_type.split(";", 1)[0].strip().lower()
    return EXTENSIONS.get(mime)
