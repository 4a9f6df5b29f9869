"""Shared test fixtures and in-memory fakes."""

from __future__ import annotations

import base64
import os

import pytest

# Ensure tests don't accidentally call real APIs
os.environ.setdefault("OPENROUTER_API_KEY", "test-key")
os.environ.setdefault("GROQ_API_KEY", "test-key")
os.environ.setdefault("GITHUB_TOKEN", "test-token")

from prompt_expert.errors import ContentNotFoundError  # noqa: E402
from prompt_expert.schemas.content import (  # noqa: E402
    ContentReference,
    RemoteContent,
    RemoteEntry,
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Records requested sleeps and advances the paired clock instead of waiting."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.clock = clock
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


class FakeSource:
    """In-memory remote content API.

    ``files`` maps a path (or ``path@version``) to its text. Directories are
    implied by the paths. ``sizes`` overrides the size the API reports and
    ``errors`` maps a path to exceptions raised on successive calls.
    Paths in ``deferred`` come back without inline content, the way the
    contents API reports large files, and are only read by ``get_payload``.
    """

    def __init__(
        self,
        files: dict[str, str] | None = None,
        sizes: dict[str, int] | None = None,
        errors: dict[str, list[Exception]] | None = None,
        deferred: set[str] | None = None,
    ) -> None:
        self.files = dict(files or {})
        self.sizes = dict(sizes or {})
        self.errors = {k: list(v) for k, v in (errors or {}).items()}
        self.deferred = set(deferred or ())
        self.calls: list[ContentReference] = []
        self.downloads: list[str] = []

    def _lookup(self, ref: ContentReference) -> str | None:
        versioned = f"{ref.path}@{ref.version}"
        if versioned in self.files:
            return versioned
        if ref.path in self.files:
            return ref.path
        return None

    async def get_content(self, ref: ContentReference) -> RemoteContent:
        self.calls.append(ref)
        pending = self.errors.get(ref.path)
        if pending:
            raise pending.pop(0)

        key = self._lookup(ref)
        if key is not None:
            raw = self.files[key].encode("utf-8")
            size = self.sizes.get(ref.path, len(raw))
            if ref.path in self.deferred:
                return RemoteContent(
                    reference=ref, size=size, download_url=f"https://raw.example.com/{key}"
                )
            return RemoteContent(
                reference=ref,
                size=size,
                content=base64.b64encode(raw).decode("ascii"),
            )

        prefix = ref.path.rstrip("/") + "/"
        children: dict[str, RemoteEntry] = {}
        for path in self.files:
            path = path.split("@", 1)[0]
            if not path.startswith(prefix):
                continue
            head, _, rest = path[len(prefix):].partition("/")
            child = prefix + head
            if rest:
                children[child] = RemoteEntry(path=child, name=head, is_collection=True)
            else:
                size = self.sizes.get(child, len(self.files.get(child, "").encode("utf-8")))
                children[child] = RemoteEntry(path=child, name=head, size=size)
        if children:
            return RemoteContent(
                reference=ref,
                is_collection=True,
                entries=tuple(sorted(children.values(), key=lambda e: e.path)),
            )
        raise ContentNotFoundError(f"Not Found: {ref}", status=404)

    async def get_payload(self, remote: RemoteContent) -> RemoteContent:
        if remote.content is not None:
            return remote
        self.downloads.append(remote.download_url)
        raw = self.files[self._lookup(remote.reference)].encode("utf-8")
        return remote.model_copy(update={"content": base64.b64encode(raw).decode("ascii")})


class FakeJudge:
    """Judgment service stub driven by a ``respond(system, user)`` function."""

    def __init__(self, respond) -> None:  # noqa: ANN001
        self.respond = respond
        self.calls: list[tuple[str, str]] = []

    async def judge(self, system: str, user: str) -> str:
        self.calls.append((system, user))
        result = self.respond(system, user)
        if isinstance(result, BaseException):
            raise result
        return result


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep(clock: FakeClock) -> FakeSleep:
    return FakeSleep(clock)


@pytest.fixture
def make_ref():
    def _make(path: str, version: str = "latest", namespace: str = "acme", collection: str = "prompts"):
        return ContentReference(namespace=namespace, collection=collection, path=path, version=version)

    return _make
