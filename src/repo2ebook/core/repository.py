"""Clone remote repositories and derive book names from their URLs."""

import logging
import re
import shutil
import subprocess
from datetime import datetime
from pathlib import Path

log = logging.getLogger(__name__)

UNKNOWN_AUTHOR = "Unknown Author"


class RepositoryError(Exception):
    """Cloning a repository failed."""


def is_repository_url(value: str) -> bool:
    """True for values that look like a git remote rather than a local path."""
    return bool(re.match(r"^(https?|git|ssh)://", value)) or value.startswith("git@")


def extract_repo_details(repo_url: str) -> tuple[str, str]:
    """Return (repo_name, author) from the last two URL segments.

    Examples:
        https://github.com/rolldown/rolldown.git -> ("rolldown", "rolldown")
        git@github.com:vuejs/core.git -> ("core", "vuejs")
    """
    cleaned = repo_url.rstrip("/").replace(":", "/")
    parts = [p for p in cleaned.split("/") if p]
    repo_name = parts[-1] if parts else "book"
    if repo_name.endswith(".git"):
        repo_name = repo_name[: -len(".git")]
    author = parts[-2] if len(parts) > 1 else UNKNOWN_AUTHOR
    return repo_name or "book", author


def default_output_name(
    name: str, extension: str, now: datetime | None = None
) -> str:
    """File name like rolldown_20240101120000.epub."""
    stamp = (now or datetime.now()).strftime("%Y%m%d%H%M%S")
    clean = re.sub(r"[^\w.-]", "_", name).strip("_") or "book"
    return f"{clean}_{stamp}.{extension.lstrip('.')}"


def clone_repository(
    repo_url: str, destination: Path, depth: int = 1, timeout: float = 600
) -> Path:
    """Shallow-clone repo_url into destination, replacing what is there.

    Raises:
        RepositoryError: If git is missing, fails, or times out
    """
    if shutil.which("git") is None:
        raise RepositoryError("git not found on PATH")

    if destination.exists():
        shutil.rmtree(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)

    cmd = ["git", "clone", "--depth", str(depth), repo_url, str(destination)]
    log.info(f"Cloning {repo_url} into {destination}")
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        raise RepositoryError(f"git clone timed out after {timeout}s")

    if result.returncode != 0:
        raise RepositoryError(result.stderr.strip() or f"git exited with code {result.returncode}")
    return destination.resolve()
