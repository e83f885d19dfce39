from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import httpx

from preview_proxy.config import PreviewSettings
from preview_proxy.errors import FetchError, FetchTimeout

logger = logging.getLogger(__name__)

USER_AGENT = "preview-proxy/1.0"


@dataclass(frozen=True)
class FetchedResource:
    url: str
    content: bytes
    content_type: str | None = None

    @property
    def size(self) -> int:
        return len(self.content)


def _declared_length(response: httpx.Response) -> int | None:
    raw = response.headers.get("Content-Length")
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


async def _download(client: httpx.AsyncClient, url: str, max_bytes: int) -> FetchedResource:
    async with client.stream("GET", url) as response:
        if not 200 <= response.status_code < 300:
            raise FetchError(f"Upstream responded with HTTP {response.status_code} for {url}")

        declared = _declared_length(response)
        if declared is not None and declared > max_bytes:
            raise FetchError(f"Remote file too large ({declared} bytes > {max_bytes} bytes)")

        buffer = bytearray()
        async for chunk in response.aiter_bytes():
            if not chunk:
                continue
            buffer.extend(chunk)
            if len(buffer) > max_bytes:
                raise FetchError(f"Remote file exceeded the size limit of {max_bytes} bytes")

        return FetchedResource(
            url=str(response.url),
            content=bytes(buffer),
            content_type=response.headers.get("Content-Type"),
        )


async def fetch_to_bytes(
    url: str,
    *,
    settings: PreviewSettings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FetchedResource:
    """Download ``url`` into memory, aborting once ``max_file_size_bytes`` is exceeded."""
    timeout = httpx.Timeout(settings.fetch_timeout_seconds)
    logger.info("Fetching %s", url)
    try:
        async with httpx.AsyncClient(
            follow_redirects=True,
            timeout=timeout,
            headers={"User-Agent": USER_AGENT},
            transport=transport,
        ) as client:
            resource = await asyncio.wait_for(
                _download(client, url, settings.max_file_size_bytes),
                timeout=settings.fetch_timeout_seconds,
            )
    except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
        raise FetchTimeout(
            f"Fetching {url} did not finish within {settings.fetch_timeout_seconds:g} seconds"
        ) from exc
    except httpx.HTTPError as exc:
        raise FetchError(f"Network error while fetching {url}: {exc}") from exc

    logger.info("Fetched %s (%d bytes)", url, resource.size)
    return resource
