import subprocess

import pytest

from repo2ebook.core import validator
from repo2ebook.core.validator import (
    EPUBCHECK_JAR_ENV,
    EpubValidator,
    ValidatorUnavailableError,
)


@pytest.fixture
def epub_file(tmp_path):
    path = tmp_path / "book.epub"
    path.write_bytes(b"PK")
    return path


def test_find_command_prefers_epubcheck_on_path(monkeypatch):
    monkeypatch.setattr(validator.shutil, "which", lambda name: f"/usr/bin/{name}")

    assert EpubValidator.find_command() == ["epubcheck"]


def test_find_command_falls_back_to_jar(tmp_path, monkeypatch):
    jar = tmp_path / "epubcheck.jar"
    jar.write_bytes(b"jar")
    monkeypatch.setattr(
        validator.shutil, "which", lambda name: "/usr/bin/java" if name == "java" else None
    )
    monkeypatch.setenv(EPUBCHECK_JAR_ENV, str(jar))

    assert EpubValidator.find_command() == ["java", "-jar", str(jar)]


def test_find_command_unavailable(monkeypatch):
    monkeypatch.setattr(validator.shutil, "which", lambda name: None)
    monkeypatch.delenv(EPUBCHECK_JAR_ENV, raising=False)

    with pytest.raises(ValidatorUnavailableError):
        EpubValidator.find_command()


def test_validate_reports_success(epub_file, monkeypatch):
    seen = []

    def fake_run(cmd, **kwargs):
        seen.append(cmd)
        return subprocess.CompletedProcess(cmd, 0, stdout="No errors or warnings detected.\n", stderr="")

    monkeypatch.setattr(validator.subprocess, "run", fake_run)

    report = EpubValidator(command=["epubcheck"]).validate(epub_file)

    assert seen == [["epubcheck", str(epub_file)]]
    assert report.passed
    assert report.returncode == 0
    assert report.output == "No errors or warnings detected."


def test_validate_reports_failure(epub_file, monkeypatch):
    def fake_run(cmd, **kwargs):
        return subprocess.CompletedProcess(
            cmd, 1, stdout="Messages: 1 error", stderr="ERROR(RSC-005): bad"
        )

    monkeypatch.setattr(validator.subprocess, "run", fake_run)

    report = EpubValidator(command=["epubcheck"]).validate(epub_file)

    assert not report.passed
    assert report.output == "Messages: 1 error\nERROR(RSC-005): bad"


def test_validate_timeout(epub_file, monkeypatch):
    def fake_run(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

    monkeypatch.setattr(validator.subprocess, "run", fake_run)

    report = EpubValidator(command=["epubcheck"], timeout=2).validate(epub_file)

    assert not report.passed
    assert report.returncode == -1
    assert "timed out" in report.output


def test_validate_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        EpubValidator(command=["epubcheck"]).validate(tmp_path / "missing.epub")
