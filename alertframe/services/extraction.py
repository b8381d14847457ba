"""Extraction service - fetches a page and pulls out the monitored element."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

from ..config import settings
from ..models import User
from .secret_store import SecretStore, SecretStoreError, secret_store

logger = logging.getLogger(__name__)

USER_AGENT = "AlertFrame/1.0 (+https://alertframe.com)"

# A list needs more than this many same-tag children
MIN_LIST_CHILDREN = 2


@dataclass
class ExtractionResult:
    """Content of the monitored element at fetch time."""
    html_content: str
    text_content: str
    item_count: Optional[int] = None


class ExtractionFailure(Exception):
    """The element could not be extracted (unreachable, not found, timeout, credentials)."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def count_items(element: Tag) -> Optional[int]:
    """Count list items: more than 2 direct children, all with the same tag.

    Returns None when the element does not look like a list.
    """
    children = [child for child in element.children if isinstance(child, Tag)]
    if len(children) <= MIN_LIST_CHILDREN:
        return None

    first_tag = children[0].name
    if all(child.name == first_tag for child in children):
        return len(children)
    return None


def extract_element(html: str, selector: str) -> ExtractionResult:
    """Extract the first element matching a CSS selector from a page."""
    soup = BeautifulSoup(html, "html.parser")
    try:
        element = soup.select_one(selector)
    except (SelectorSyntaxError, ValueError) as e:
        raise ExtractionFailure(f"Invalid selector {selector!r}: {e}") from e

    if element is None:
        raise ExtractionFailure(f"Element not found with selector: {selector}")

    return ExtractionResult(
        html_content=element.decode_contents(),
        text_content=element.get_text().strip(),
        item_count=count_items(element),
    )


class PageFetcher:
    """Fetches the HTML of a page."""

    # True when fetching needs the owner's browser API key
    requires_credential = False

    async def fetch(self, url: str, credential: Optional[str] = None) -> str:
        raise NotImplementedError


class HttpPageFetcher(PageFetcher):
    """Plain HTTP fetch. Fast, but does not run page scripts."""

    def __init__(self, timeout: int = 30):
        self.timeout = timeout

    async def fetch(self, url: str, credential: Optional[str] = None) -> str:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT},
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.text
        except httpx.TimeoutException as e:
            raise ExtractionFailure("Request timeout") from e
        except httpx.HTTPStatusError as e:
            raise ExtractionFailure(f"HTTP {e.response.status_code} fetching {url}") from e
        except httpx.RequestError as e:
            raise ExtractionFailure(f"Connection error: {e}") from e


class BrowserPageFetcher(PageFetcher):
    """Renders the page in Chromium via Playwright.

    With ``cdp_url`` set, connects to a remote browser service and
    authenticates with the owner's browser API key.
    """

    def __init__(self, cdp_url: Optional[str] = None, timeout: int = 30):
        self.cdp_url = cdp_url
        self.timeout = timeout
        self.requires_credential = bool(cdp_url)

    async def fetch(self, url: str, credential: Optional[str] = None) -> str:
        try:
            from playwright.async_api import async_playwright, Error as PlaywrightError
        except ImportError as e:
            raise ExtractionFailure("Browser fetching requires the 'browser' extra (playwright)") from e

        try:
            async with async_playwright() as p:
                if self.cdp_url:
                    browser = await p.chromium.connect_over_cdp(
                        self.cdp_url,
                        headers={"Authorization": f"Bearer {credential}"},
                        timeout=self.timeout * 1000,
                    )
                else:
                    browser = await p.chromium.launch(headless=True)
                try:
                    page = await browser.new_page(viewport={"width": 1280, "height": 800})
                    await page.goto(url, wait_until="networkidle", timeout=self.timeout * 1000)
                    return await page.content()
                finally:
                    await browser.close()
        except PlaywrightError as e:
            raise ExtractionFailure(f"Browser error: {e}") from e


def build_fetcher() -> PageFetcher:
    """Build the page fetcher selected by FETCH_MODE."""
    if settings.fetch_mode == "browser":
        return BrowserPageFetcher(settings.browser_cdp_url, settings.extraction_timeout_seconds)
    return HttpPageFetcher(settings.extraction_timeout_seconds)


class ExtractionService:
    """Fetch a page and extract one element, reporting every failure as ExtractionFailure."""

    def __init__(
        self,
        fetcher: Optional[PageFetcher] = None,
        secrets: Optional[SecretStore] = None,
        timeout: Optional[int] = None,
    ):
        self.fetcher = fetcher or build_fetcher()
        self.secrets = secrets or secret_store
        self.timeout = timeout or settings.extraction_timeout_seconds

    def _credential_for(self, user: Optional[User]) -> Optional[str]:
        """Decrypt the owner's browser API key when the fetcher needs one."""
        if not self.fetcher.requires_credential:
            return None

        if user is None:
            raise ExtractionFailure("User required for browser automation")
        if not user.browser_api_key:
            raise ExtractionFailure(
                "Browser API key required. Please add your API key in Settings to enable monitoring."
            )
        try:
            return self.secrets.decrypt(user.browser_api_key)
        except SecretStoreError as e:
            logger.error(f"Failed to decrypt browser API key for user {user.id}: {e}")
            raise ExtractionFailure(
                "Failed to decrypt API key. Please delete and re-add it in Settings."
            ) from e

    async def extract(self, url: str, selector: str, user: Optional[User] = None) -> ExtractionResult:
        """Fetch ``url`` and extract the element matching ``selector``."""
        credential = self._credential_for(user)

        try:
            html = await asyncio.wait_for(self.fetcher.fetch(url, credential), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ExtractionFailure(f"Extraction timed out after {self.timeout}s") from e

        return extract_element(html, selector)


# Global instance
extraction_service = ExtractionService()
