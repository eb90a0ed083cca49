import pytest
import requests

from repo2ebook.core.image_localizer import (
    PLACEHOLDER_PATH,
    ImageLocalizer,
    relative_href,
    remote_file_stem,
)
from repo2ebook.models.archive import ImageStatus
from repo2ebook.models.config import BuildConfig

from tests.conftest import FakeResponse, FakeSession, write_file

LOGO_URL = "https://example.com/static/logo.png"


def png_response(body: bytes = b"\x89PNG-data") -> FakeResponse:
    return FakeResponse(200, body, {"Content-Type": "image/png"})


def make_localizer(context, routes=None, **config):
    session = FakeSession(routes)
    return ImageLocalizer(context, BuildConfig(**config), session=session), session


def test_remote_image_is_downloaded_and_rewritten(context, source_dir):
    localizer, session = make_localizer(context, {LOGO_URL: png_response()})

    html, refs = localizer.localize_html(f'<p><img src="{LOGO_URL}"></p>', source_dir)

    assert len(refs) == 1
    ref = refs[0]
    assert ref.status == ImageStatus.FETCHED
    assert ref.media_type == "image/png"
    assert ref.local_path.startswith("images/example.com_static_logo-")
    assert ref.local_path.endswith(".png")
    assert f'src="{ref.local_path}"' in html
    assert context.archive_file(ref.local_path).read_bytes() == b"\x89PNG-data"


def test_request_uses_timeout_user_agent_and_no_auto_redirects(context, source_dir):
    localizer, session = make_localizer(
        context, {LOGO_URL: png_response()}, image_timeout=3.5, user_agent="test-agent"
    )

    localizer.localize_html(f'<img src="{LOGO_URL}">', source_dir)

    kwargs = session.kwargs[0]
    assert kwargs["timeout"] == 3.5
    assert kwargs["headers"]["User-Agent"] == "test-agent"
    assert kwargs["allow_redirects"] is False


def test_identical_urls_are_fetched_and_registered_once(context, source_dir):
    localizer, session = make_localizer(context, {LOGO_URL: png_response()})
    html = f'<img src="{LOGO_URL}"><p>text</p><img src="{LOGO_URL}">'

    html, refs = localizer.localize_html(html, source_dir)

    assert session.calls == [LOGO_URL]
    assert len(context.registry) == 1
    assert html.count(refs[0].local_path) == 2


def test_same_url_in_second_chapter_reuses_registered_image(context, source_dir):
    localizer, session = make_localizer(context, {LOGO_URL: png_response()})

    localizer.localize_html(f'<img src="{LOGO_URL}">', source_dir)
    _, refs = localizer.localize_html(f'<img src="{LOGO_URL}">', source_dir, "guide/a.xhtml")

    assert session.calls == [LOGO_URL]
    assert len(context.registry) == 1
    assert refs[0].status == ImageStatus.FETCHED


@pytest.mark.parametrize(
    "route",
    [
        FakeResponse(404),
        FakeResponse(500),
        requests.Timeout("timed out"),
        requests.ConnectionError("refused"),
    ],
)
def test_failed_fetch_uses_placeholder(context, source_dir, route):
    localizer, _ = make_localizer(context, {LOGO_URL: route})

    html, refs = localizer.localize_html(f'<img src="{LOGO_URL}">', source_dir)

    assert refs[0].status == ImageStatus.PLACEHOLDER
    assert f'src="{PLACEHOLDER_PATH}"' in html
    assert context.archive_file(PLACEHOLDER_PATH).exists()


def test_one_failure_does_not_affect_siblings(context, source_dir):
    broken = "https://example.com/broken.png"
    localizer, _ = make_localizer(
        context, {LOGO_URL: png_response(), broken: requests.Timeout("slow")}
    )

    _, refs = localizer.localize_html(
        f'<img src="{broken}"><img src="{LOGO_URL}">', source_dir
    )

    statuses = {ref.original_src: ref.status for ref in refs}
    assert statuses == {broken: ImageStatus.PLACEHOLDER, LOGO_URL: ImageStatus.FETCHED}


def test_relative_redirect_is_followed(context, source_dir):
    start = "https://example.com/old.png"
    localizer, session = make_localizer(
        context,
        {
            start: FakeResponse(302, headers={"Location": "/new.png"}),
            "https://example.com/new.png": png_response(),
        },
    )

    _, refs = localizer.localize_html(f'<img src="{start}">', source_dir)

    assert session.calls == [start, "https://example.com/new.png"]
    assert refs[0].status == ImageStatus.FETCHED
    assert refs[0].original_src == start


def test_redirects_beyond_cap_fail_closed(context, source_dir):
    loop = "https://example.com/loop.png"
    localizer, session = make_localizer(
        context, {loop: FakeResponse(301, headers={"Location": loop})}, max_redirects=2
    )

    _, refs = localizer.localize_html(f'<img src="{loop}">', source_dir)

    assert len(session.calls) == 3
    assert refs[0].status == ImageStatus.PLACEHOLDER


def test_redirect_without_location_fails_closed(context, source_dir):
    localizer, _ = make_localizer(context, {LOGO_URL: FakeResponse(302)})

    _, refs = localizer.localize_html(f'<img src="{LOGO_URL}">', source_dir)

    assert refs[0].status == ImageStatus.PLACEHOLDER


def test_extension_falls_back_to_url_then_jpg(context, source_dir):
    gif = "https://example.com/anim.gif"
    bare = "https://example.com/render?id=7"
    localizer, _ = make_localizer(
        context, {gif: FakeResponse(200, b"GIF"), bare: FakeResponse(200, b"JPG")}
    )

    _, refs = localizer.localize_html(f'<img src="{gif}"><img src="{bare}">', source_dir)

    paths = {ref.original_src: ref.local_path for ref in refs}
    assert paths[gif].endswith(".gif")
    assert paths[bare].endswith(".jpg")
    assert "id_7" in paths[bare]


def test_local_image_is_copied(context, source_dir):
    write_file(source_dir / "docs" / "img" / "diagram.svg", "<svg/>")
    localizer, session = make_localizer(context)

    html, refs = localizer.localize_html(
        '<img src="img/diagram.svg" alt="d">', source_dir / "docs", "docs/page.xhtml"
    )

    ref = refs[0]
    assert ref.status == ImageStatus.COPIED
    assert ref.local_path.startswith("images/docs_img_diagram-")
    assert ref.local_path.endswith(".svg")
    assert ref.media_type == "image/svg+xml"
    assert f'src="../{ref.local_path}"' in html
    assert context.archive_file(ref.local_path).read_text() == "<svg/>"
    assert session.calls == []


def test_missing_local_image_uses_placeholder(context, source_dir):
    localizer, _ = make_localizer(context)

    html, refs = localizer.localize_html('<img src="nope.png">', source_dir)

    assert refs[0].status == ImageStatus.PLACEHOLDER
    assert f'src="{PLACEHOLDER_PATH}"' in html


@pytest.mark.parametrize(
    "first, second",
    [
        ("a b.png", "a_b.png"),
        ("docs/img_a.png", "docs_img/a.png"),
    ],
)
def test_local_files_with_colliding_names_stay_distinct(context, source_dir, first, second):
    write_file(source_dir / first, "first")
    write_file(source_dir / second, "second")
    localizer, _ = make_localizer(context)
    html = f'<img src="{first.replace(" ", "%20")}"><img src="{second}">'

    _, refs = localizer.localize_html(html, source_dir)

    paths = [ref.local_path for ref in refs]
    assert len(set(paths)) == 2
    assert context.archive_file(paths[0]).read_text() == "first"
    assert context.archive_file(paths[1]).read_text() == "second"


def test_local_files_never_take_reserved_names(context, source_dir):
    write_file(source_dir / "cover.jpg", "cover")
    write_file(source_dir / "placeholder.svg", "mine")
    localizer, _ = make_localizer(context)

    _, refs = localizer.localize_html(
        '<img src="cover.jpg"><img src="placeholder.svg"><img src="gone.png">', source_dir
    )

    paths = {ref.original_src: ref.local_path for ref in refs}
    assert paths["cover.jpg"] != "images/cover.jpg"
    assert paths["placeholder.svg"] != PLACEHOLDER_PATH
    assert paths["gone.png"] == PLACEHOLDER_PATH
    assert context.archive_file(paths["placeholder.svg"]).read_text() == "mine"
    assert "Image unavailable" in context.archive_file(PLACEHOLDER_PATH).read_text()


def test_protocol_relative_url_is_fetched_over_https(context, source_dir):
    localizer, session = make_localizer(context, {LOGO_URL: png_response()})

    html, refs = localizer.localize_html('<img src="//example.com/static/logo.png">', source_dir)

    assert session.calls == [LOGO_URL]
    assert refs[0].status == ImageStatus.FETCHED
    assert f'src="{refs[0].local_path}"' in html


def test_data_uri_is_left_alone(context, source_dir):
    localizer, session = make_localizer(context)
    data = "data:image/png;base64,AAAA"

    html, refs = localizer.localize_html(f'<img src="{data}">', source_dir)

    assert refs == []
    assert data in html
    assert session.calls == []


def test_missing_alt_is_added(context, source_dir):
    localizer, _ = make_localizer(context, {LOGO_URL: png_response()})

    html, _ = localizer.localize_html(f'<img src="{LOGO_URL}">', source_dir)

    assert 'alt=""' in html
    assert html.rstrip().endswith("/>")


def test_markdown_images_outside_fences_are_rewritten(context, source_dir):
    localizer, session = make_localizer(context, {LOGO_URL: png_response()})
    text = (
        f"Intro ![logo]({LOGO_URL} \"Logo\")\n"
        "\n"
        "```md\n"
        "![example](missing.png)\n"
        "```\n"
        f'<img src="{LOGO_URL}">\n'
    )

    rewritten, refs = localizer.localize_markdown(text, source_dir)

    assert session.calls == [LOGO_URL]
    assert len(refs) == 1
    local_path = refs[0].local_path
    assert f"![logo]({local_path} \"Logo\")" in rewritten
    assert "![example](missing.png)" in rewritten
    assert f'<img src="{local_path}">' in rewritten


def test_remote_file_stem_is_deterministic_and_distinct():
    first = remote_file_stem("https://example.com/a.png?size=2")
    second = remote_file_stem("https://example.com/a.png?size=3")

    assert first == remote_file_stem("https://example.com/a.png?size=2")
    assert first != second
    assert first.startswith("example.com_a_size_2-")


def test_relative_href():
    assert relative_href("images/a.png", "intro.xhtml") == "images/a.png"
    assert relative_href("images/a.png", "guide/deep/page.xhtml") == "../../images/a.png"
