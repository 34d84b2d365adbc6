"""Screenshot asset downloader with bounded retries and exponential backoff."""

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import httpx
import structlog

log = structlog.stdlib.get_logger()


class AssetDownloader:
    """Fetches binary assets to local storage.

    Failures are reported through the return value, never raised, so the
    caller decides whether a missing asset matters.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        timeout: float = 60.0,
        chunk_size: int = 8192,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the asset downloader.

        Args:
            max_attempts: Total attempts per asset
            base_delay: Backoff base in seconds; attempt n waits base_delay * 2**n
            timeout: Request timeout in seconds
            chunk_size: Size of chunks to read/write in bytes
            transport: Optional httpx transport (tests use httpx.MockTransport)
            sleep: Coroutine used to wait between attempts
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.chunk_size = chunk_size
        self._sleep = sleep

        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=30.0),
            headers={"User-Agent": "catalog-ingest/1.0"},
            follow_redirects=True,
            transport=transport,
        )

    async def download(self, source_url: str, destination: Path) -> bool:
        """Download ``source_url`` to ``destination``.

        Returns:
            True when the full byte stream was written, False after the last
            failed attempt
        """
        for attempt in range(self.max_attempts):
            try:
                await self._fetch_to_file(source_url, destination)
                log.debug(
                    "Asset downloaded",
                    url=source_url,
                    path=str(destination),
                    attempt=attempt + 1,
                )
                return True

            except (httpx.HTTPError, httpx.InvalidURL, OSError) as e:
                log.warning(
                    "Asset download failed",
                    url=source_url,
                    path=str(destination),
                    attempt=attempt + 1,
                    max_attempts=self.max_attempts,
                    error=str(e),
                    error_type=type(e).__name__,
                )

                if attempt == self.max_attempts - 1:
                    log.error(
                        "Asset download failed after all attempts",
                        url=source_url,
                        total_attempts=self.max_attempts,
                    )
                    return False

                delay = self.base_delay * (2 ** attempt)
                log.info("Retrying asset download after delay", delay=delay)
                await self._sleep(delay)

        return False

    async def _fetch_to_file(self, source_url: str, destination: Path) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        temp_path = destination.with_name(destination.name + ".part")

        try:
            async with self._client.stream("GET", source_url) as response:
                response.raise_for_status()

                # content-length counts encoded bytes; only comparable for identity encoding
                expected_size = 0
                if "content-encoding" not in response.headers:
                    expected_size = _content_length(response.headers)
                written = 0
                with open(temp_path, "wb") as f:
                    async for chunk in response.aiter_bytes(self.chunk_size):
                        f.write(chunk)
                        written += len(chunk)

            if expected_size > 0 and written != expected_size:
                raise httpx.RequestError(f"File size mismatch: expected {expected_size}, got {written}")

            temp_path.replace(destination)

        finally:
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError:
                    log.warning("Failed to clean up partial download", path=str(temp_path))

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self._client.aclose()

    async def __aenter__(self) -> "AssetDownloader":
        return self

    async def __aexit__(self, exc_type: type[Exception] | None, exc_val: Exception | None, exc_tb: Any) -> None:
        await self.close()


def _content_length(headers: httpx.Headers) -> int:
    """Declared body size, 0 when missing or malformed."""
    try:
        return max(0, int(headers.get("content-length", 0)))
    except ValueError:
        return 0
