"""
Bounded same-host web crawler for URL sources.

Breadth-first from the start URL, following in-page links up to a maximum
depth and page count. Only HTML responses are kept.
"""
import logging
import re
from collections import deque
from dataclasses import dataclass
from typing import List, Optional, Set
from urllib.parse import urljoin, urlparse, urlunparse

import httpx
from bs4 import BeautifulSoup
from django.conf import settings

logger = logging.getLogger(__name__)

USER_AGENT = "SourcebookCrawler/1.0"

# Links to binary assets are never fetched
SKIP_EXTENSIONS = re.compile(
    r'\.(jpg|jpeg|png|gif|svg|webp|ico|pdf|zip|tar|gz|rar|7z|mp4|mp3|wav)$',
    re.IGNORECASE,
)


@dataclass
class CrawledPage:
    url: str
    title: str
    content: str


def normalize_url(href: str, base: str) -> Optional[str]:
    """
    Resolve href against base, dropping fragment and query string.

    Returns None for non-http(s) links.
    """
    absolute = urljoin(base, href)
    parsed = urlparse(absolute)
    if parsed.scheme not in ('http', 'https'):
        return None
    return urlunparse((parsed.scheme, parsed.netloc, parsed.path or '/', '', '', ''))


def should_visit(url: str, start_host: str) -> bool:
    parsed = urlparse(url)
    if parsed.netloc != start_host:
        return False
    return not SKIP_EXTENSIONS.search(parsed.path)


def html_to_text(html: str) -> tuple:
    """Return (title, visible text) for an HTML document."""
    soup = BeautifulSoup(html, 'html.parser')
    for tag in soup(['script', 'style', 'noscript', 'nav', 'footer', 'header']):
        tag.decompose()
    title = soup.title.get_text(strip=True) if soup.title else ''
    text = soup.get_text(separator='\n')
    text = re.sub(r'\n\s*\n+', '\n\n', text).strip()
    return title, text


def extract_links(html: str, base_url: str) -> List[str]:
    soup = BeautifulSoup(html, 'html.parser')
    links = []
    for anchor in soup.find_all('a', href=True):
        url = normalize_url(anchor['href'], base_url)
        if url:
            links.append(url)
    return links


async def crawl_site(
    start_url: str,
    max_depth: Optional[int] = None,
    max_pages: Optional[int] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[CrawledPage]:
    """
    Crawl start_url and same-host pages reachable from it.

    Args:
        start_url: First page to fetch
        max_depth: Link depth limit (settings.CRAWL_MAX_DEPTH)
        max_pages: Page count limit (settings.CRAWL_MAX_PAGES)
        transport: Optional httpx transport (tests)

    Returns:
        Pages with non-empty text, in visit order
    """
    max_depth = max_depth if max_depth is not None else getattr(settings, 'CRAWL_MAX_DEPTH', 2)
    max_pages = max_pages or getattr(settings, 'CRAWL_MAX_PAGES', 20)
    timeout = float(getattr(settings, 'CRAWL_TIMEOUT', 20))

    first = normalize_url(start_url, start_url)
    if not first:
        return []
    start_host = urlparse(first).netloc

    queue = deque([(first, 0)])
    seen: Set[str] = {first}
    pages: List[CrawledPage] = []

    async with httpx.AsyncClient(
        timeout=timeout,
        follow_redirects=True,
        headers={"User-Agent": USER_AGENT},
        transport=transport,
    ) as client:
        while queue and len(pages) < max_pages:
            url, depth = queue.popleft()
            try:
                response = await client.get(url)
            except httpx.HTTPError as e:
                logger.warning(f"Crawl fetch failed for {url}: {e}")
                continue

            if response.status_code != 200:
                logger.debug(f"Skipping {url}: status {response.status_code}")
                continue
            if 'text/html' not in response.headers.get('content-type', ''):
                continue

            html = response.text
            title, text = html_to_text(html)
            if text:
                pages.append(CrawledPage(url=url, title=title, content=text))

            if depth >= max_depth:
                continue
            for link in extract_links(html, url):
                if link not in seen and should_visit(link, start_host):
                    seen.add(link)
                    queue.append((link, depth + 1))

    logger.info(f"Crawled {len(pages)} pages starting at {start_url}")
    return pages
