"""Run epubcheck against a finished archive."""

import logging
import os
import shutil
import subprocess
from pathlib import Path

from repo2ebook.models.archive import ValidationReport

log = logging.getLogger(__name__)

EPUBCHECK_JAR_ENV = "REPO2EBOOK_EPUBCHECK_JAR"


class ValidatorUnavailableError(Exception):
    """No epubcheck installation was found."""


class EpubValidator:
    """Wrap the epubcheck command line; the archive is never modified."""

    TIMEOUT_SECONDS = 300

    def __init__(self, command: list[str] | None = None, timeout: float = TIMEOUT_SECONDS):
        self.command = command
        self.timeout = timeout

    @classmethod
    def find_command(cls) -> list[str]:
        """Locate epubcheck on PATH, or a jar named by the environment.

        Raises:
            ValidatorUnavailableError: If neither is available
        """
        if shutil.which("epubcheck"):
            return ["epubcheck"]
        jar = os.environ.get(EPUBCHECK_JAR_ENV)
        if jar and Path(jar).expanduser().is_file() and shutil.which("java"):
            return ["java", "-jar", str(Path(jar).expanduser())]
        raise ValidatorUnavailableError(
            f"epubcheck not found. Install it or set {EPUBCHECK_JAR_ENV} to epubcheck.jar"
        )

    def validate(self, epub_path: Path) -> ValidationReport:
        """Validate epub_path and return the textual report."""
        if not epub_path.is_file():
            raise FileNotFoundError(f"File not found: {epub_path}")

        cmd = [*(self.command or self.find_command()), str(epub_path)]
        try:
            result = subprocess.run(
                cmd, capture_output=True, text=True, timeout=self.timeout
            )
        except subprocess.TimeoutExpired:
            return ValidationReport(
                path=str(epub_path),
                passed=False,
                returncode=-1,
                output=f"epubcheck timed out after {self.timeout}s",
            )

        output = "\n".join(
            part.strip() for part in (result.stdout, result.stderr) if part.strip()
        )
        log.info(f"epubcheck exited with code {result.returncode} for {epub_path}")
        return ValidationReport(
            path=str(epub_path),
            passed=result.returncode == 0,
            returncode=result.returncode,
            output=output,
        )
