"""Vector index interface shared by the Pinecone and FAISS backends."""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from apex_rag import config
from apex_rag.errors import VectorStoreError

logger = structlog.get_logger()


@dataclass
class VectorRecord:
    """One persisted vector with its chunk metadata."""

    id: str
    values: List[float]
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "values": self.values, "metadata": self.metadata}


@dataclass
class QueryMatch:
    """A nearest-neighbour hit returned by a query."""

    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


class VectorStore(ABC):
    """Narrow interface over an external vector index.

    Subclasses implement single-request primitives; batching and the
    skip-and-continue policy for failed upsert batches live here.
    """

    def __init__(self, batch_size: Optional[int] = None):
        self.batch_size = batch_size or config.UPSERT_BATCH_SIZE
        self.failed_batches = 0

    async def upsert(self, records: List[VectorRecord]) -> int:
        """Upsert records in fixed-size batches.

        A batch that fails is logged and skipped; later batches still run.

        Args:
            records: Records to write

        Returns:
            Number of records successfully written
        """
        written = 0
        total_batches = (len(records) + self.batch_size - 1) // self.batch_size

        for number, start in enumerate(range(0, len(records), self.batch_size), 1):
            batch = records[start : start + self.batch_size]
            try:
                await self._upsert_batch(batch)
            except VectorStoreError as e:
                self.failed_batches += 1
                logger.error(
                    "vector_upsert_batch_failed",
                    batch=number,
                    total_batches=total_batches,
                    batch_size=len(batch),
                    error=str(e),
                )
                continue

            written += len(batch)
            logger.info(
                "vector_upsert_batch_completed",
                batch=number,
                total_batches=total_batches,
                batch_size=len(batch),
            )

        return written

    @abstractmethod
    async def _upsert_batch(self, records: List[VectorRecord]) -> None:
        """Write one batch. Raises VectorStoreError on failure."""

    @abstractmethod
    async def query(
        self,
        vector: List[float],
        top_k: int,
        include_metadata: bool = True,
    ) -> List[QueryMatch]:
        """Return up to ``top_k`` nearest records, best first.

        Raises:
            VectorStoreError: If the query fails
        """

    @abstractmethod
    async def delete_all(self) -> None:
        """Remove every record from the index."""

    @abstractmethod
    async def describe(self) -> Dict[str, Any]:
        """Return index statistics (vector count, dimension)."""


def get_vector_store(backend: Optional[str] = None) -> VectorStore:
    """Build the vector store selected by configuration.

    Args:
        backend: "pinecone" or "faiss" (default from config.VECTOR_BACKEND)

    Returns:
        VectorStore instance
    """
    backend = (backend or config.VECTOR_BACKEND).lower()

    if backend == "pinecone":
        from apex_rag.rag.store_pinecone import PineconeVectorStore

        return PineconeVectorStore()
    if backend == "faiss":
        from apex_rag.rag.store_faiss import FAISSVectorStore

        return FAISSVectorStore()

    raise ValueError(f"Unknown vector backend: {backend}")
