"""Ingest pipeline for indexing wiki pages.

Orchestrates:
- Detail-link discovery on index pages
- Page fetching and HTML extraction
- Embedding generation
- Batched vector upserts
"""
import asyncio
from typing import Any, Callable, Dict, List, Optional, Sequence

import structlog

from apex_rag import config
from apex_rag.errors import EmbeddingError
from apex_rag.llm_client import GeminiClient, gemini_client
from apex_rag.rag.html_parser import Chunk, WikiPageParser
from apex_rag.rag.links import discover_links
from apex_rag.rag.store_base import VectorRecord, VectorStore, get_vector_store
from apex_rag.wiki_client import WikiClient, wiki_client

logger = structlog.get_logger()


def _empty_stats() -> Dict[str, int]:
    return {
        "pages_discovered": 0,
        "pages_scraped": 0,
        "pages_failed": 0,
        "chunks_created": 0,
        "embeddings_generated": 0,
        "embeddings_failed": 0,
        "vectors_upserted": 0,
        "batches_failed": 0,
    }


class IngestPipeline:
    """Pipeline for ingesting wiki pages into the vector index.

    The pipeline owns the only mutable accumulator (the chunk collection);
    link discovery and page parsing are pure functions over one page.
    """

    def __init__(
        self,
        wiki: Optional[WikiClient] = None,
        llm_client: Optional[GeminiClient] = None,
        vector_store: Optional[VectorStore] = None,
        index_pages: Optional[Sequence[str]] = None,
        direct_pages: Optional[Sequence[str]] = None,
        request_delay: Optional[float] = None,
        batch_size: int = None,
        embed_concurrency: int = None,
        parser: Optional[WikiPageParser] = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            wiki: Client used to fetch pages
            llm_client: Client used to embed chunk text
            vector_store: Destination index (built from config if not provided)
            index_pages: Pages whose links are followed (default from config)
            direct_pages: Pages scraped as-is (default from config)
            request_delay: Seconds to sleep between fetches, 0 disables
            batch_size: Chunks embedded and upserted per batch
            embed_concurrency: Maximum in-flight embedding calls
            parser: HTML extractor
        """
        self.wiki = wiki or wiki_client
        self.llm_client = llm_client or gemini_client
        self.vector_store = vector_store or get_vector_store()
        self.index_pages = list(config.INDEX_PAGES if index_pages is None else index_pages)
        self.direct_pages = list(config.DIRECT_PAGES if direct_pages is None else direct_pages)
        self.request_delay = config.SCRAPE_DELAY if request_delay is None else request_delay
        self.batch_size = batch_size or config.UPSERT_BATCH_SIZE
        self.embed_concurrency = embed_concurrency or config.EMBED_CONCURRENCY
        self.parser = parser or WikiPageParser()

        self.stats = _empty_stats()

        logger.info(
            "ingest_pipeline_initialized",
            index_pages=self.index_pages,
            direct_pages=self.direct_pages,
            request_delay=self.request_delay,
            batch_size=self.batch_size,
        )

    async def _throttle(self) -> None:
        if self.request_delay > 0:
            await asyncio.sleep(self.request_delay)

    async def resolve_pages(self) -> List[str]:
        """Build the final scrape set from direct pages and discovered links.

        Returns:
            Unique page slugs, direct pages first
        """
        pages = list(self.direct_pages)

        for page_name in self.index_pages:
            links = await discover_links(self.wiki, page_name)
            pages.extend(links)
            await self._throttle()

        pages = list(dict.fromkeys(pages))
        self.stats["pages_discovered"] = len(pages)

        logger.info("scrape_set_resolved", total_pages=len(pages))
        return pages

    async def scrape_page(self, page_name: str) -> List[Chunk]:
        """Fetch and extract one detail page.

        Returns:
            Chunks of the page, empty if the fetch failed
        """
        html = await self.wiki.fetch_page(page_name)
        if html is None:
            self.stats["pages_failed"] += 1
            return []

        chunks = self.parser.parse(html, page_name, source=self.wiki.page_url(page_name))
        self.stats["pages_scraped"] += 1

        logger.info("page_scraped", page=page_name, chunks=len(chunks))
        return chunks

    async def collect_chunks(
        self,
        pages: Optional[Sequence[str]] = None,
        progress_callback: Optional[Callable[[int, int, str], None]] = None,
    ) -> List[Chunk]:
        """Scrape every page and accumulate one ordered chunk collection.

        Args:
            pages: Page slugs to scrape (resolved from seeds if not provided)
            progress_callback: Optional callback(current, total, page_name)

        Returns:
            Chunks in page order with duplicates removed
        """
        if pages is None:
            pages = await self.resolve_pages()

        collected: Dict[str, Chunk] = {}

        for idx, page_name in enumerate(pages, 1):
            if progress_callback:
                progress_callback(idx, len(pages), page_name)

            for chunk in await self.scrape_page(page_name):
                collected.setdefault(chunk.chunk_id, chunk)

            if idx < len(pages):
                await self._throttle()

        chunks = list(collected.values())
        self.stats["chunks_created"] = len(chunks)

        logger.info("chunks_collected", pages=len(pages), chunks=len(chunks))
        return chunks

    async def _embed_chunk(
        self, chunk: Chunk, semaphore: asyncio.Semaphore
    ) -> Optional[VectorRecord]:
        async with semaphore:
            try:
                values = await self.llm_client.embed(chunk.content)
            except EmbeddingError as e:
                self.stats["embeddings_failed"] += 1
                logger.error(
                    "chunk_embedding_failed",
                    chunk_id=chunk.chunk_id,
                    page=chunk.metadata.page_title,
                    error=str(e),
                )
                return None

        self.stats["embeddings_generated"] += 1
        return VectorRecord(id=chunk.chunk_id, values=values, metadata=chunk.to_metadata())

    async def embed_and_upsert(self, chunks: Sequence[Chunk]) -> int:
        """Embed chunks batch by batch and upsert each batch.

        Embedding calls within a batch run concurrently. Chunks whose
        embedding fails are skipped; failed upsert batches are skipped.

        Returns:
            Number of vectors written
        """
        semaphore = asyncio.Semaphore(self.embed_concurrency)
        total_batches = (len(chunks) + self.batch_size - 1) // self.batch_size
        failed_before = self.vector_store.failed_batches
        written = 0

        for number, start in enumerate(range(0, len(chunks), self.batch_size), 1):
            batch = chunks[start : start + self.batch_size]
            logger.info("processing_batch", batch=number, total_batches=total_batches)

            records = await asyncio.gather(
                *(self._embed_chunk(chunk, semaphore) for chunk in batch)
            )
            records = [r for r in records if r is not None]
            if not records:
                logger.warning("batch_has_no_embeddings", batch=number)
                continue

            written += await self.vector_store.upsert(records)

        self.stats["vectors_upserted"] += written
        self.stats["batches_failed"] += self.vector_store.failed_batches - failed_before
        return written

    async def ingest_all(
        self,
        rebuild: bool = False,
        pages: Optional[Sequence[str]] = None,
        progress_callback: Optional[Callable[[int, int, str], None]] = None,
    ) -> Dict[str, Any]:
        """Run discovery, extraction, embedding and upsert end to end.

        Args:
            rebuild: Delete every vector before writing
            pages: Explicit page slugs, bypassing seed resolution
            progress_callback: Optional callback(current, total, page_name)

        Returns:
            Dictionary with ingestion statistics
        """
        logger.info("starting_ingest_all", rebuild=rebuild)
        self.stats = _empty_stats()

        if pages is not None:
            pages = list(dict.fromkeys(pages))
            self.stats["pages_discovered"] = len(pages)

        chunks = await self.collect_chunks(pages, progress_callback=progress_callback)

        if not chunks:
            logger.warning("no_chunks_found")
            return self.stats

        if rebuild:
            await self.vector_store.delete_all()
            logger.info("index_cleared")

        await self.embed_and_upsert(chunks)

        logger.info("ingest_all_completed", stats=self.stats)
        return self.stats

