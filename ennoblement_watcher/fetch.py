"""
Fetch module for the Ennoblement Watcher pipeline.

This module handles fetching the ennoblement statistics page with
proper error handling, retries, and exponential backoff, and exposes
the scraper used by the poll cycle.
"""

import asyncio
from typing import List, Optional
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ennoblement_watcher.models import EnnoblementEvent
from ennoblement_watcher.parse import DEFAULT_ROW_SELECTOR, extract_events
from ennoblement_watcher.utils import get_logger


# Module logger
logger = get_logger("fetch")

# Default configuration
DEFAULT_TIMEOUT = 15  # seconds
DEFAULT_MAX_RETRIES = 2
DEFAULT_BACKOFF_FACTOR = 1.0  # urllib3 backoff: factor * 2 ** (retry - 1)
RETRY_STATUS_CODES = (429, 500, 502, 503, 504)

# The statistics site serves a reduced page to unknown clients
BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

DEFAULT_TARGET_URL = "https://tr.twstats.com/tr94/index.php?page=ennoblements"


class FetchError(Exception):
    """Raised when the statistics page could not be retrieved."""

    def __init__(self, message: str, url: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


def create_session(
    max_retries: int = DEFAULT_MAX_RETRIES,
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR
) -> requests.Session:
    """
    Build the HTTP session used to poll the statistics page.

    Rate limiting and gateway errors from the statistics site are retried
    inside the transport, so a single poll survives a brief outage before
    FetchError reaches the poll cycle.

    Args:
        max_retries: Transport-level retries per request.
        backoff_factor: urllib3 backoff factor between those retries.

    Returns:
        Session with browser-like headers and the retry adapter mounted.
    """
    retries = Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=RETRY_STATUS_CODES,
        allowed_methods=frozenset({"GET"}),
        raise_on_status=False
    )
    adapter = HTTPAdapter(max_retries=retries)

    session = requests.Session()
    for scheme in ("http://", "https://"):
        session.mount(scheme, adapter)
    session.headers.update(BROWSER_HEADERS)

    return session


def validate_url(url: Optional[str]) -> bool:
    """Return True for an absolute http(s) URL with a host, used for the page and webhooks."""
    if not url:
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def fetch_page(
    url: str,
    session: requests.Session,
    timeout: int = DEFAULT_TIMEOUT
) -> str:
    """
    Fetch a single page and return its HTML.

    Args:
        url: URL to fetch.
        session: Configured requests session.
        timeout: Request timeout in seconds.

    Returns:
        Response body as text.

    Raises:
        FetchError: On invalid URL, non-2xx status, timeout or connection failure.
    """
    logger.debug(f"Fetching URL: {url}")

    if not validate_url(url):
        raise FetchError("Invalid URL format", url)

    try:
        response = session.get(url, timeout=timeout)
    except requests.exceptions.Timeout as e:
        logger.warning(f"Timeout fetching {url}")
        raise FetchError("Request timeout", url) from e
    except requests.exceptions.ConnectionError as e:
        logger.warning(f"Connection error for {url}: {e}")
        raise FetchError(f"Connection error: {e}", url) from e
    except requests.exceptions.RequestException as e:
        logger.error(f"Request exception for {url}: {e}")
        raise FetchError(f"Request failed: {e}", url) from e

    if not 200 <= response.status_code < 300:
        logger.warning(f"HTTP {response.status_code} for {url}")
        raise FetchError(f"HTTP {response.status_code}", url, response.status_code)

    logger.info(f"Successfully fetched {url} ({len(response.text)} bytes)")
    return response.text


class EnnoblementScraper:
    """
    Scraper for the ennoblement statistics page.

    Fetches the page and extracts events from its table. Partial row
    failures are skipped inside extraction; a failed fetch or a page with
    no table rows raises.
    """

    def __init__(
        self,
        url: str = DEFAULT_TARGET_URL,
        row_selector: str = DEFAULT_ROW_SELECTOR,
        session: Optional[requests.Session] = None,
        timeout: int = DEFAULT_TIMEOUT
    ):
        self.url = url
        self.row_selector = row_selector
        self.timeout = timeout
        self._session = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = create_session()
        return self._session

    def scrape_sync(self) -> List[EnnoblementEvent]:
        """Fetch and parse the page on the calling thread."""
        logger.info(f"Scraping ennoblement events from {self.url}")
        html = fetch_page(self.url, self.session, self.timeout)
        return extract_events(html, self.row_selector, self.url)

    async def scrape(self) -> List[EnnoblementEvent]:
        """
        Fetch and parse the page without blocking the event loop.

        Raises:
            FetchError: If the page could not be retrieved.
            ExtractionError: If the page holds no event table rows.
        """
        return await asyncio.to_thread(self.scrape_sync)

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None
