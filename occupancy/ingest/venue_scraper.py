"""Venue page scraper: fetch the page and extract occupancy and opening hours."""

import logging
from datetime import date

import httpx

from occupancy.config.schema import DEFAULT_USER_AGENT
from occupancy.ingest.page_parser import parse_occupancy, parse_schedule
from occupancy.models.common import start_of_week
from occupancy.models.venue import VenueSnapshot

logger = logging.getLogger(__name__)


class ScrapeError(Exception):
    """Raised when the venue page cannot be fetched."""


class VenueScraper:
    def __init__(
        self,
        url: str,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self.user_agent = user_agent
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self.client.aclose()

    async def fetch_page(self) -> str:
        try:
            resp = await self.client.get(self.url, headers={"User-Agent": self.user_agent})
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("Venue page returned %d", e.response.status_code)
            raise ScrapeError(f"HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error("Venue page request failed: %s", e)
            raise ScrapeError(f"Request failed: {e}") from e
        return resp.text

    async def scrape(self, today: date) -> VenueSnapshot:
        """Scrape the page once. Failures come back as None fields, never raise."""
        try:
            html = await self.fetch_page()
        except ScrapeError:
            return VenueSnapshot(occupancy=None, schedule=None)

        return VenueSnapshot(
            occupancy=parse_occupancy(html),
            schedule=parse_schedule(html, start_of_week(today)),
        )
