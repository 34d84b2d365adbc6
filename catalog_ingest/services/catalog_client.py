"""Catalog API client with rate limiting and provider throttling handling."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import structlog

from ..models import CatalogCandidate, CatalogPage, GameDetail, ScreenshotRef
from .errors import CatalogApiError
from .rate_limiter import RateLimiter

log = structlog.stdlib.get_logger()

DEFAULT_BASE_URL = "https://api.rawg.io/api"
TOO_MANY_REQUESTS = 429


class CatalogClient:
    """Paginated read access to a RAWG-compatible game catalog.

    Every issued request passes through the rate limiter exactly once.
    Throttling responses are waited out and retried without limit; any
    other non-success response raises CatalogApiError.
    """

    def __init__(
        self,
        api_key: str,
        rate_limiter: RateLimiter,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        throttle_cooldown: float = 65.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the catalog client.

        Args:
            api_key: Catalog API key sent as the ``key`` query parameter
            rate_limiter: Limiter shared by every request of this client
            base_url: API root, without trailing slash
            timeout: Request timeout in seconds
            throttle_cooldown: Seconds to wait after a 429, longer than the limiter window
            transport: Optional httpx transport (tests use httpx.MockTransport)
            sleep: Coroutine used to wait out throttling
        """
        self.base_url = base_url.rstrip("/")
        self.throttle_cooldown = throttle_cooldown
        self._api_key = api_key
        self._rate_limiter = rate_limiter
        self._sleep = sleep

        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers={"User-Agent": "catalog-ingest/1.0"},
            follow_redirects=True,
            transport=transport,
        )

        log.info(
            "Catalog client initialized",
            base_url=self.base_url,
            timeout=timeout,
            throttle_cooldown=throttle_cooldown,
        )

    async def list_candidates(self, page: int, page_size: int, quality_floor: int) -> CatalogPage:
        """Fetch one page of candidates, highest rated first.

        The ordering is stable across the life of a job so that a listing
        at the same page always returns the same candidates.
        """
        data = await self._get_json(
            "/games",
            {
                "page": page,
                "page_size": page_size,
                "ordering": "-rating",
                "metacritic": f"{quality_floor},100",
            },
        )
        items = [self._parse_candidate(raw) for raw in data.get("results", [])]

        log.debug("Catalog page fetched", page=page, items=len(items), has_next=bool(data.get("next")))

        return CatalogPage(
            items=items,
            has_next_page=bool(data.get("next")),
            total_count=data.get("count"),
        )

    async def fetch_detail(self, external_id: int) -> GameDetail:
        """Fetch developer/publisher enrichment for one game."""
        data = await self._get_json(f"/games/{external_id}")
        return GameDetail(
            external_id=external_id,
            developer=_first_name(data.get("developers")),
            publisher=_first_name(data.get("publishers")),
            quality_score=data.get("metacritic"),
        )

    async def list_screenshots(self, external_id: int) -> list[ScreenshotRef]:
        """Fetch the screenshot references of one game."""
        data = await self._get_json(f"/games/{external_id}/screenshots")
        return [
            ScreenshotRef(
                external_id=raw["id"],
                image_url=raw["image"],
                width=raw.get("width"),
                height=raw.get("height"),
            )
            for raw in data.get("results", [])
            if raw.get("image")
        ]

    async def fetch_total_count(self, quality_floor: int) -> int:
        """Number of candidates the provider reports for a quality floor."""
        data = await self._get_json(
            "/games",
            {"page": 1, "page_size": 1, "metacritic": f"{quality_floor},100"},
        )
        return int(data.get("count") or 0)

    async def _get_json(self, endpoint: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Issue one rate-limited GET, waiting out provider throttling."""
        await self._rate_limiter.acquire()

        url = f"{self.base_url}{endpoint}"
        query = {"key": self._api_key, **(params or {})}

        log.debug("Making catalog request", url=url, params=params)
        response = await self._client.get(url, params=query)

        if response.status_code == TOO_MANY_REQUESTS:
            log.warning(
                "Catalog API throttled request, cooling down",
                url=url,
                cooldown=self.throttle_cooldown,
            )
            await self._sleep(self.throttle_cooldown)
            return await self._get_json(endpoint, params)

        if not response.is_success:
            log.error("Catalog API error", url=url, status_code=response.status_code)
            raise CatalogApiError(response.status_code, url, response.reason_phrase)

        return response.json()

    @staticmethod
    def _parse_candidate(raw: dict[str, Any]) -> CatalogCandidate:
        return CatalogCandidate(
            external_id=raw["id"],
            slug=raw["slug"],
            name=raw.get("name") or raw["slug"],
            released=raw.get("released"),
            developer=_first_name(raw.get("developers")),
            publisher=_first_name(raw.get("publishers")),
            genres=tuple(g["name"] for g in raw.get("genres") or []),
            platforms=tuple(p["platform"]["name"] for p in raw.get("platforms") or []),
            quality_score=raw.get("metacritic"),
            cover_image_url=raw.get("background_image"),
            screenshots_count=raw.get("screenshots_count"),
        )

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self._client.aclose()
        log.info("Catalog client closed")

    async def __aenter__(self) -> "CatalogClient":
        return self

    async def __aexit__(self, exc_type: type[Exception] | None, exc_val: Exception | None, exc_tb: Any) -> None:
        await self.close()


def _first_name(entries: list[dict[str, Any]] | None) -> str | None:
    if not entries:
        return None
    return entries[0].get("name")
