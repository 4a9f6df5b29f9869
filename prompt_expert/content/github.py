"""Remote content API: the GitHub repository contents endpoint.

``get_content`` returns either a file (size, plus the base64 payload when
the API inlines it) or a directory listing (entries with sizes). Payloads
the API does not inline are only fetched by ``get_payload``, once the
loader has checked the reported size against its per-kind ceilings.
HTTP failures are mapped onto the ``ContentError`` hierarchy so the
recovery table can tell transient from permanent failures.
"""

from __future__ import annotations

import base64
from typing import Protocol
from urllib.parse import quote

import httpx
import structlog

from prompt_expert.errors import (
    ContentError,
    ContentNotFoundError,
    ContentPermissionError,
    ContentRateLimitError,
    ContentUnavailableError,
)
from prompt_expert.schemas.content import ContentReference, RemoteContent, RemoteEntry

logger = structlog.get_logger(__name__)


class ContentSource(Protocol):
    """Anything that can resolve a reference to remote content."""

    async def get_content(self, ref: ContentReference) -> RemoteContent: ...

    async def get_payload(self, remote: RemoteContent) -> RemoteContent: ...


def _retry_after(response: httpx.Response) -> float | None:
    header = response.headers.get("retry-after")
    if header and header.strip().isdigit():
        return float(header)
    return None


def raise_for_status(response: httpx.Response, ref: ContentReference) -> None:
    """Translate an HTTP error status into a ContentError subclass."""
    status = response.status_code
    if status < 400:
        return

    where = f"{ref.repository}:{ref.path}@{ref.version}"
    rate_limited = (
        response.headers.get("x-ratelimit-remaining") == "0"
        or "retry-after" in response.headers
    )
    if status == 429 or (status == 403 and rate_limited):
        raise ContentRateLimitError(
            f"GitHub API rate limit exceeded fetching {where}",
            status=status,
            retry_after=_retry_after(response),
        )
    if status == 404:
        raise ContentNotFoundError(f"Not Found: {where}", status=status)
    if status in (401, 403):
        raise ContentPermissionError(f"Permission denied ({status}) for {where}", status=status)
    if status >= 500:
        raise ContentUnavailableError(f"GitHub returned {status} for {where}", status=status)
    raise ContentError(f"Unexpected status {status} for {where}", status=status)


class GitHubContentClient:
    """Async GitHub contents API client.

    Args:
        token: GitHub token; anonymous requests are heavily rate limited.
        base_url: API root, overridable for GitHub Enterprise.
        timeout: Per-request timeout in seconds.
        client: Pre-built ``httpx.AsyncClient`` (tests pass one with a
            ``MockTransport``).
    """

    def __init__(
        self,
        token: str | None = None,
        base_url: str = "https://api.github.com",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        )

    async def __aenter__(self) -> GitHubContentClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, url: str, ref: ContentReference, **kwargs) -> httpx.Response:  # noqa: ANN003
        try:
            response = await self._client.get(url, **kwargs)
        except httpx.TimeoutException as exc:
            raise ContentUnavailableError(f"Request timed out fetching {ref}") from exc
        except httpx.TransportError as exc:
            raise ContentUnavailableError(f"Connection error fetching {ref}: {exc}") from exc
        raise_for_status(response, ref)
        return response

    async def get_content(self, ref: ContentReference) -> RemoteContent:
        url = f"/repos/{ref.namespace}/{ref.collection}/contents/{quote(ref.path)}"
        params = {} if ref.is_floating else {"ref": ref.version}
        response = await self._get(url, ref, params=params)
        data = response.json()

        if isinstance(data, list):
            entries = tuple(
                RemoteEntry(
                    path=entry["path"],
                    name=entry.get("name", entry["path"].rsplit("/", 1)[-1]),
                    size=int(entry.get("size") or 0),
                    is_collection=entry.get("type") == "dir",
                )
                for entry in data
                if entry.get("type") in ("file", "dir")
            )
            logger.debug("github_listing", path=ref.path, entries=len(entries))
            return RemoteContent(reference=ref, is_collection=True, entries=entries)

        return RemoteContent(
            reference=ref,
            size=int(data.get("size") or 0),
            content=data.get("content") or None,
            encoding="base64",
            sha=data.get("sha"),
            download_url=data.get("download_url"),
        )

    async def get_payload(self, remote: RemoteContent) -> RemoteContent:
        """Download a file the contents API listed without inline content (over 1 MB)."""
        if remote.content is not None or not remote.download_url:
            return remote
        raw = await self._get(remote.download_url, remote.reference)
        logger.debug("github_download", path=remote.reference.path, bytes=len(raw.content))
        return remote.model_copy(
            update={"content": base64.b64encode(raw.content).decode("ascii"), "encoding": "base64"}
        )
