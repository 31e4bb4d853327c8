"""Detail-link discovery on wiki index pages."""
from typing import List

from bs4 import BeautifulSoup
import structlog

from apex_rag.wiki_client import WikiClient

logger = structlog.get_logger()

WIKI_PATH_PREFIX = "/wiki/"

GENERIC_SELECTOR = "#mw-content-text .div-col a, #mw-content-text .wikitable a"

# Index pages whose layout needs a dedicated selector
ROLE_SELECTORS = {
    "Legends": ".character-grid .character-box-link",
    "Weapons": ".wikitable.sortable tr td:first-child a",
    "Cosmetics": ".wikitable tr td:first-child a",
}


def selector_for(page_name: str) -> str:
    """CSS selector for the anchors worth following on an index page."""
    return ROLE_SELECTORS.get(page_name, GENERIC_SELECTOR)


def href_to_page_name(href: str) -> str:
    """Convert an anchor href to a page slug, or "" if it should be ignored.

    Only internal article links are accepted: namespaced pages
    (``Special:``, ``File:``, ``Category:`` ...) and edit links are rejected
    and fragments are dropped.
    """
    if not href or not href.startswith(WIKI_PATH_PREFIX):
        return ""
    if ":" in href or "action=edit" in href:
        return ""
    path = href.split("#", 1)[0]
    return path[len(WIKI_PATH_PREFIX):]


def extract_detail_links(html: str, page_name: str) -> List[str]:
    """Collect detail-page slugs linked from an index page.

    Args:
        html: Raw markup of the index page
        page_name: Slug of the index page, selects the extraction rule

    Returns:
        Unique slugs in first-seen order
    """
    soup = BeautifulSoup(html, "html.parser")
    links = []
    for anchor in soup.select(selector_for(page_name)):
        name = href_to_page_name(anchor.get("href", ""))
        if name:
            links.append(name)
    return list(dict.fromkeys(links))


async def discover_links(client: WikiClient, page_name: str) -> List[str]:
    """Fetch an index page and return its detail links.

    Args:
        client: Wiki client used for the fetch
        page_name: Slug of the index page

    Returns:
        Unique detail slugs, empty if the page could not be fetched
    """
    logger.info("discovering_links", page=page_name)

    html = await client.fetch_page(page_name)
    if html is None:
        logger.warning("index_page_unavailable", page=page_name)
        return []

    links = extract_detail_links(html, page_name)
    logger.info("links_discovered", page=page_name, count=len(links))
    return links
