"""Pinecone vector index accessed over its data-plane REST API."""
from typing import Any, Dict, List, Optional

import httpx
import structlog

from apex_rag import config
from apex_rag.errors import VectorStoreError
from apex_rag.rag.store_base import QueryMatch, VectorRecord, VectorStore

logger = structlog.get_logger()


class PineconeVectorStore(VectorStore):
    """Vector store backed by a Pinecone index host."""

    def __init__(
        self,
        host: str = None,
        api_key: str = None,
        namespace: str = None,
        batch_size: Optional[int] = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the Pinecone store.

        Args:
            host: Full index host URL (defaults to config.PINECONE_HOST)
            api_key: Pinecone API key (defaults to config.PINECONE_API_KEY)
            namespace: Optional namespace for all operations
            batch_size: Records per upsert request
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        super().__init__(batch_size=batch_size)
        self.host = (host or config.PINECONE_HOST).rstrip("/")
        self.api_key = api_key if api_key is not None else config.PINECONE_API_KEY
        self.namespace = namespace if namespace is not None else config.PINECONE_NAMESPACE
        self.timeout = timeout or config.VECTOR_TIMEOUT
        self.transport = transport

        if not self.host:
            logger.warning("pinecone_host_not_configured")

    async def _post(
        self, path: str, payload: Dict[str, Any], namespaced: bool = True
    ) -> Dict[str, Any]:
        if namespaced and self.namespace:
            payload = {**payload, "namespace": self.namespace}

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.post(
                    f"{self.host}{path}",
                    headers={"Api-Key": self.api_key, "Content-Type": "application/json"},
                    json=payload,
                )
                response.raise_for_status()
                return response.json() if response.content else {}

        except httpx.HTTPStatusError as e:
            logger.error(
                "pinecone_http_error",
                path=path,
                status_code=e.response.status_code,
                body_preview=e.response.text[:200],
            )
            raise VectorStoreError(
                f"Pinecone {path} failed with status {e.response.status_code}",
                {"path": path},
            ) from e
        except httpx.HTTPError as e:
            logger.error("pinecone_connection_error", path=path, error=str(e))
            raise VectorStoreError(f"Pinecone {path} failed: {e}", {"path": path}) from e
        except ValueError as e:
            raise VectorStoreError(f"Malformed Pinecone response: {e}", {"path": path}) from e

    async def _upsert_batch(self, records: List[VectorRecord]) -> None:
        await self._post("/vectors/upsert", {"vectors": [r.to_dict() for r in records]})

    async def query(
        self,
        vector: List[float],
        top_k: int,
        include_metadata: bool = True,
    ) -> List[QueryMatch]:
        data = await self._post(
            "/query",
            {"vector": vector, "topK": top_k, "includeMetadata": include_metadata},
        )

        matches = [
            QueryMatch(
                id=match.get("id", ""),
                score=float(match.get("score", 0.0)),
                metadata=match.get("metadata") or {},
            )
            for match in data.get("matches", [])
        ]
        matches.sort(key=lambda m: m.score, reverse=True)

        logger.info("pinecone_query_completed", top_k=top_k, results_found=len(matches))
        return matches[:top_k]

    async def delete_all(self) -> None:
        logger.warning("pinecone_delete_all", host=self.host, namespace=self.namespace)
        await self._post("/vectors/delete", {"deleteAll": True})

    async def describe(self) -> Dict[str, Any]:
        data = await self._post("/describe_index_stats", {}, namespaced=False)
        return {
            "backend": "pinecone",
            "vector_count": data.get("totalVectorCount", 0),
            "dimension": data.get("dimension"),
        }
