"""HTTP client for fetching wiki pages."""
import httpx
from typing import Optional
import structlog

from apex_rag import config

logger = structlog.get_logger()


class WikiClient:
    """Async fetcher for wiki pages by slug.

    Fetch failures are not raised: a page that cannot be retrieved simply
    contributes nothing to the ingestion run.
    """

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the wiki client.

        Args:
            base_url: Wiki article base URL (defaults to config.WIKI_BASE_URL)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = (base_url or config.WIKI_BASE_URL).rstrip("/")
        self.timeout = timeout or config.WIKI_TIMEOUT
        self.transport = transport

    def page_url(self, page_name: str) -> str:
        """Build the public URL for a page slug."""
        return f"{self.base_url}/{page_name}"

    async def fetch_page(self, page_name: str) -> Optional[str]:
        """Fetch the raw HTML of a page.

        Args:
            page_name: Wiki page slug, e.g. "Lifeline"

        Returns:
            Page HTML, or None if the request failed or returned non-2xx
        """
        url = self.page_url(page_name)

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self.transport,
            ) as client:
                response = await client.get(
                    url, headers={"User-Agent": config.WIKI_USER_AGENT}
                )
        except httpx.HTTPError as e:
            logger.error("wiki_fetch_failed", page=page_name, url=url, error=str(e))
            return None

        if not response.is_success:
            logger.error(
                "wiki_fetch_bad_status",
                page=page_name,
                url=url,
                status_code=response.status_code,
            )
            return None

        logger.debug("wiki_page_fetched", page=page_name, length=len(response.text))
        return response.text


# Global client instance
wiki_client = WikiClient()
