"""FAISS vector store for local, offline use.

Handles:
- Cosine similarity via normalized inner-product search
- Upsert by string id (existing ids are replaced)
- Metadata persistence next to the index
"""
import hashlib
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import faiss
import numpy as np
import structlog

from apex_rag import config
from apex_rag.errors import VectorStoreError
from apex_rag.rag.store_base import QueryMatch, VectorRecord, VectorStore

logger = structlog.get_logger()


def _int_id(record_id: str) -> int:
    """Map a string record id to a positive int64 FAISS id."""
    return int(hashlib.sha256(record_id.encode("utf-8")).hexdigest()[:15], 16)


def _normalize(vectors: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return vectors / norms


class FAISSVectorStore(VectorStore):
    """FAISS-based vector store with string ids and metadata."""

    def __init__(
        self,
        index_dir: Path = None,
        dimension: Optional[int] = None,
        batch_size: Optional[int] = None,
        persist: bool = True,
    ):
        """Initialize the FAISS vector store.

        Args:
            index_dir: Directory for the index and metadata (default from config)
            dimension: Embedding dimension (default from config)
            batch_size: Records per upsert batch
            persist: Save to disk after every mutation
        """
        super().__init__(batch_size=batch_size)
        self.index_dir = Path(index_dir or config.FAISS_INDEX_DIR)
        self.dimension = dimension or config.EMBEDDING_DIMENSION
        self.persist = persist

        self.index_path = self.index_dir / "vectors.index"
        self.metadata_path = self.index_dir / "metadata.json"

        self.index: Optional[faiss.Index] = None
        self.records: Dict[int, Dict[str, Any]] = {}

        logger.info(
            "faiss_store_initialized",
            index_dir=str(self.index_dir),
            dimension=self.dimension,
        )

    def _new_index(self) -> faiss.Index:
        return faiss.IndexIDMap2(faiss.IndexFlatIP(self.dimension))

    def _ensure_index(self) -> faiss.Index:
        """Load the index from disk, or create an empty one."""
        if self.index is not None:
            return self.index

        if self.persist and self.index_path.exists() and self.metadata_path.exists():
            try:
                self.index = faiss.read_index(str(self.index_path))
                with open(self.metadata_path, "r") as f:
                    stored = json.load(f)
            except Exception as e:
                raise VectorStoreError(f"Failed to load FAISS index: {e}") from e

            if self.index.d != self.dimension:
                raise VectorStoreError(
                    f"Dimension mismatch: index has dim={self.index.d}, "
                    f"expected {self.dimension}. Please rebuild the index."
                )

            self.records = {int(k): v for k, v in stored.get("records", {}).items()}
            logger.info("faiss_index_loaded", vector_count=self.index.ntotal)
        else:
            self.index = self._new_index()
            self.records = {}
            logger.info("faiss_index_created", dimension=self.dimension)

        return self.index

    def _save(self) -> None:
        if not self.persist or self.index is None:
            return

        self.index_dir.mkdir(parents=True, exist_ok=True)
        try:
            faiss.write_index(self.index, str(self.index_path))
            with open(self.metadata_path, "w") as f:
                json.dump(
                    {
                        "embedding_model": config.EMBEDDING_MODEL,
                        "embedding_dimension": self.dimension,
                        "vector_count": self.index.ntotal,
                        "records": {str(k): v for k, v in self.records.items()},
                    },
                    f,
                )
        except Exception as e:
            raise VectorStoreError(f"Failed to save FAISS index: {e}") from e

    async def _upsert_batch(self, records: List[VectorRecord]) -> None:
        index = self._ensure_index()

        vectors = np.array([r.values for r in records], dtype=np.float32)
        if vectors.ndim != 2 or vectors.shape[1] != self.dimension:
            raise VectorStoreError(
                f"Embedding dimension mismatch: expected {self.dimension}, "
                f"got {vectors.shape[-1] if vectors.ndim == 2 else 'ragged'}"
            )

        ids = np.array([_int_id(r.id) for r in records], dtype=np.int64)

        # Replace existing entries with the same id
        index.remove_ids(ids)
        index.add_with_ids(_normalize(vectors), ids)

        for int_id, record in zip(ids.tolist(), records):
            self.records[int_id] = {"id": record.id, "metadata": record.metadata}

        self._save()

        logger.debug("vectors_added", count=len(records), total_vectors=index.ntotal)

    async def query(
        self,
        vector: List[float],
        top_k: int,
        include_metadata: bool = True,
    ) -> List[QueryMatch]:
        index = self._ensure_index()

        query_vector = np.array([vector], dtype=np.float32)
        if query_vector.shape[1] != self.dimension:
            raise VectorStoreError(
                f"Query dimension mismatch: expected {self.dimension}, "
                f"got {query_vector.shape[1]}"
            )

        top_k = min(top_k, index.ntotal)
        if top_k == 0:
            return []

        scores, ids = index.search(_normalize(query_vector), top_k)

        matches = []
        for score, int_id in zip(scores[0].tolist(), ids[0].tolist()):
            if int_id == -1 or int_id not in self.records:
                continue
            record = self.records[int_id]
            matches.append(
                QueryMatch(
                    id=record["id"],
                    score=float(score),
                    metadata=record["metadata"] if include_metadata else {},
                )
            )

        logger.info("vector_search_completed", top_k=top_k, results_found=len(matches))
        return matches

    async def delete_all(self) -> None:
        logger.warning("rebuilding_index", index_dir=str(self.index_dir))

        if self.index_path.exists():
            self.index_path.unlink()
        if self.metadata_path.exists():
            self.metadata_path.unlink()

        self.index = self._new_index()
        self.records = {}
        self._save()

    async def describe(self) -> Dict[str, Any]:
        index = self._ensure_index()
        return {
            "backend": "faiss",
            "vector_count": index.ntotal,
            "dimension": self.dimension,
            "index_exists_on_disk": self.index_path.exists(),
        }
