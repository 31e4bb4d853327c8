"""Retriever for semantic search over indexed wiki chunks.

Handles:
- Query embedding generation
- Vector index search
- Result ranking and formatting
"""
from dataclasses import dataclass
from typing import List, Optional

import structlog

from apex_rag import config
from apex_rag.llm_client import GeminiClient, gemini_client
from apex_rag.rag.store_base import QueryMatch, VectorStore, get_vector_store

logger = structlog.get_logger()


@dataclass
class RetrievalResult:
    """A single retrieved chunk with provenance."""

    chunk_id: str
    content: str
    page_title: str
    section_title: str
    source_url: str
    score: float

    @property
    def source(self) -> str:
        """Page title used for citation."""
        return self.page_title

    @classmethod
    def from_match(cls, match: QueryMatch) -> "RetrievalResult":
        metadata = match.metadata or {}
        return cls(
            chunk_id=match.id,
            content=metadata.get("text", ""),
            page_title=metadata.get("pageTitle", ""),
            section_title=metadata.get("sectionTitle", ""),
            source_url=metadata.get("source", ""),
            score=match.score,
        )


class Retriever:
    """Semantic retriever for the RAG pipeline."""

    def __init__(
        self,
        vector_store: Optional[VectorStore] = None,
        llm_client: Optional[GeminiClient] = None,
        top_k: int = None,
    ):
        """Initialize the retriever.

        Args:
            vector_store: Vector index (built from config if not provided)
            llm_client: Client used to embed queries
            top_k: Number of results to retrieve (default from config)
        """
        self.vector_store = vector_store or get_vector_store()
        self.llm_client = llm_client or gemini_client
        self.top_k = top_k or config.RETRIEVAL_TOP_K

        logger.info("retriever_initialized", top_k=self.top_k)

    async def embed_query(self, query: str) -> List[float]:
        """Embed a user query with the same model used for ingestion.

        Raises:
            EmbeddingError: If embedding fails after retries
        """
        return await self.llm_client.embed(query)

    async def search(
        self, query_embedding: List[float], top_k: Optional[int] = None
    ) -> List[RetrievalResult]:
        """Search the index with a precomputed query vector.

        Args:
            query_embedding: Query vector
            top_k: Number of results to return (overrides default)

        Returns:
            Results with text, sorted by score (best first)

        Raises:
            VectorStoreError: If the index query fails
        """
        top_k = top_k or self.top_k
        matches = await self.vector_store.query(
            query_embedding, top_k=top_k, include_metadata=True
        )

        results = []
        for match in matches:
            result = RetrievalResult.from_match(match)
            if not result.content:
                logger.warning("match_without_text", chunk_id=match.id)
                continue
            results.append(result)

        results.sort(key=lambda r: r.score, reverse=True)
        results = results[:top_k]

        logger.info(
            "retrieval_completed",
            results_returned=len(results),
            top_score=results[0].score if results else None,
        )
        return results

    async def retrieve(self, query: str, top_k: Optional[int] = None) -> List[RetrievalResult]:
        """Embed a query and return the most similar chunks.

        Args:
            query: User query text
            top_k: Number of results to return (overrides default)

        Returns:
            List of RetrievalResult objects, sorted by score (best first)
        """
        if not query or not query.strip():
            logger.warning("empty_query_provided")
            return []

        logger.info("retrieval_started", query_length=len(query), top_k=top_k or self.top_k)
        return await self.search(await self.embed_query(query), top_k=top_k)
