import subprocess
from pathlib import Path

import pytest

from repo2ebook.core import converter as converter_module
from repo2ebook.core.converter import (
    ConversionError,
    ConverterFactory,
    ConverterUnavailableError,
    MarkdownConverter,
    PandocConverter,
)
from repo2ebook.models.config import ConverterName

from tests.conftest import write_file


def test_markdown_converter_writes_html_fragment(tmp_path):
    source = write_file(tmp_path / "intro.md", "# Intro\n\nhello *world*\n")
    destination = tmp_path / "out" / "intro.html"

    result = MarkdownConverter().convert(source, destination)

    html = result.read_text(encoding="utf-8")
    assert result == destination
    assert "<h1" in html
    assert "<em>world</em>" in html
    assert "<html" not in html


def test_markdown_converter_renders_fenced_code(tmp_path):
    source = write_file(tmp_path / "code.md", "```js\nconst a = 1 < 2;\n```\n")

    html = MarkdownConverter().convert(source, tmp_path / "code.html").read_text()

    assert "<pre>" in html
    assert "const a = 1 &lt; 2;" in html


def test_markdown_converter_missing_source(tmp_path):
    with pytest.raises(ConversionError) as exc_info:
        MarkdownConverter().convert(tmp_path / "missing.md", tmp_path / "out.html")

    assert exc_info.value.error_type == "READ_ERROR"


def test_pandoc_command():
    converter = PandocConverter(executable="/usr/bin/pandoc")

    cmd = converter.build_command(Path("in.md"), Path("out.html"))

    assert cmd == ["/usr/bin/pandoc", "in.md", "-f", "markdown", "-t", "html", "-o", "out.html"]


def test_pandoc_nonzero_exit_raises(tmp_path, monkeypatch):
    def fake_run(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, 64, stdout="", stderr="bad input")

    monkeypatch.setattr(converter_module.subprocess, "run", fake_run)

    with pytest.raises(ConversionError) as exc_info:
        PandocConverter().convert(tmp_path / "in.md", tmp_path / "out.html")

    assert exc_info.value.error_type == "CLI_ERROR"
    assert exc_info.value.code == 64
    assert "bad input" in str(exc_info.value)


def test_pandoc_timeout_raises(tmp_path, monkeypatch):
    def fake_run(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

    monkeypatch.setattr(converter_module.subprocess, "run", fake_run)

    with pytest.raises(ConversionError) as exc_info:
        PandocConverter(timeout=1).convert(tmp_path / "in.md", tmp_path / "out.html")

    assert exc_info.value.error_type == "TIMEOUT"


def test_pandoc_success_passes_timeout(tmp_path, monkeypatch):
    seen = {}

    def fake_run(cmd, **kwargs):
        seen.update(kwargs)
        Path(cmd[-1]).write_text("<p>ok</p>")
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    monkeypatch.setattr(converter_module.subprocess, "run", fake_run)

    result = PandocConverter(timeout=7).convert(tmp_path / "in.md", tmp_path / "sub" / "out.html")

    assert result.read_text() == "<p>ok</p>"
    assert seen["timeout"] == 7
    assert seen["capture_output"] is True


def test_factory_creates_markdown_converter():
    assert isinstance(ConverterFactory.create("markdown"), MarkdownConverter)


def test_factory_requires_pandoc_on_path(monkeypatch):
    monkeypatch.setattr(converter_module.shutil, "which", lambda name: None)

    with pytest.raises(ConverterUnavailableError):
        ConverterFactory.create(ConverterName.PANDOC)


def test_factory_creates_pandoc_with_timeout(monkeypatch):
    monkeypatch.setattr(converter_module.shutil, "which", lambda name: "/usr/bin/pandoc")

    created = ConverterFactory.create(ConverterName.PANDOC, timeout=30)

    assert isinstance(created, PandocConverter)
    assert created.timeout == 30


def test_factory_rejects_unknown_name():
    with pytest.raises(ValueError, match="Unknown converter"):
        ConverterFactory.create("asciidoc")
