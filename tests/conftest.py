import threading
import time
from datetime import datetime, timezone
from pathlib import Path

import pytest

from repo2ebook.core.context import BuildContext
from repo2ebook.models.book import PackageMetadata


class FakeResponse:
    def __init__(self, status_code: int = 200, body: bytes = b"", headers: dict[str, str] | None = None):
        self.status_code = status_code
        self.body = body
        self.headers = headers or {}
        self.closed = False

    def iter_content(self, chunk_size: int = 1):
        yield self.body

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Stands in for requests.Session; unknown URLs answer 404.

    delays maps URLs to seconds slept before answering.
    """

    def __init__(
        self,
        routes: dict[str, FakeResponse | Exception] | None = None,
        delays: dict[str, float] | None = None,
    ):
        self.routes = routes or {}
        self.delays = delays or {}
        self.calls: list[str] = []
        self.kwargs: list[dict] = []
        self._lock = threading.Lock()

    def get(self, url: str, **kwargs) -> FakeResponse:
        with self._lock:
            self.calls.append(url)
            self.kwargs.append(kwargs)
        if url in self.delays:
            time.sleep(self.delays[url])
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(404)
        if isinstance(route, Exception):
            raise route
        return route


def write_file(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def fixed_clock() -> datetime:
    return datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)


@pytest.fixture
def metadata(fixed_clock) -> PackageMetadata:
    return PackageMetadata(
        title="Sample Book",
        author="Jane Writer",
        uuid="0f8fad5b-d9cb-469f-a165-70867728950e",
        modified=fixed_clock,
    )


@pytest.fixture
def source_dir(tmp_path) -> Path:
    root = tmp_path / "source"
    root.mkdir()
    return root


@pytest.fixture
def context(tmp_path, source_dir) -> BuildContext:
    return BuildContext(working_dir=tmp_path / "work", source_root=source_dir).prepare()
