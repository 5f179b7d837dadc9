"""
Web scraper tool. Fetches a page and returns its title, text and image URLs.
Direct HTTP call with httpx, parsed with BeautifulSoup.
"""

import logging
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup
from pydantic import Field

from ..agent.types import ToolResult
from .registry import ToolArgs, tool

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)
MAX_TEXT_CHARS = 5000
MAX_IMAGES = 20


def extract_page(html: str, url: str) -> dict:
    soup = BeautifulSoup(html, "html.parser")
    for element in soup(["script", "style", "noscript"]):
        element.decompose()

    title = soup.title.get_text(strip=True) if soup.title else ""
    body = soup.body or soup
    text = " ".join(body.get_text(" ", strip=True).split())

    images: list[str] = []
    for img in soup.find_all("img"):
        src = img.get("src") or img.get("data-src")
        if not src:
            continue
        absolute = urljoin(url, src)
        if absolute.startswith(("http://", "https://")) and absolute not in images:
            images.append(absolute)

    return {
        "title": title,
        "text": text[:MAX_TEXT_CHARS],
        "image_urls": images[:MAX_IMAGES],
    }


class WebScraperArgs(ToolArgs):
    url: str = Field(description="Full http(s) URL of the page to read.")


@tool(
    name="web_scraper",
    description=(
        "Read a web page (brand site, product page, lookbook) and return its title, "
        "visible text (first 5000 characters) and up to 20 image URLs."
    ),
    args=WebScraperArgs,
    display_name="Web Scraper",
    category="research",
)
async def web_scraper(args: WebScraperArgs, images: dict, ctx) -> ToolResult:
    parsed = urlparse(args.url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return ToolResult.failure(f"Not a valid http(s) URL: {args.url}")

    try:
        async with httpx.AsyncClient(timeout=10.0, follow_redirects=True) as client:
            resp = await client.get(args.url, headers={"User-Agent": USER_AGENT})
            resp.raise_for_status()
    except httpx.HTTPStatusError as e:
        logger.warning("Scrape %s returned %d", args.url, e.response.status_code)
        return ToolResult.failure(f"Could not fetch {args.url}: HTTP {e.response.status_code}")
    except httpx.HTTPError as e:
        logger.warning("Scrape %s failed: %s", args.url, e)
        return ToolResult.failure(f"Could not fetch {args.url}: {e}")

    page = extract_page(resp.text, str(resp.url))
    logger.info("Scraped %s: %d chars, %d images", args.url, len(page["text"]), len(page["image_urls"]))
    return ToolResult(
        success=True,
        message="Web scrape complete.",
        should_continue=True,
        data=page,
    )
