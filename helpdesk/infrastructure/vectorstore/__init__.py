"""
Vector Store Infrastructure
============================

Similarity index over knowledge-article embeddings.

Holds (article id, embedding) pairs and answers nearest-neighbour queries
ranked by cosine similarity. The same index serves two callers:

- Article dedup: is a new draft essentially the same as an existing article?
  (all articles, drafts included)
- Retrieval: which published articles are relevant to a new ticket?

Two backends share the ISimilarityIndex interface:

- InMemorySimilarityIndex: numpy, hydrated from the knowledge_embeddings table
- MilvusSimilarityIndex: Zilliz Cloud / Milvus collection with COSINE metric
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
from pymilvus import MilvusClient

from helpdesk.config import settings
from helpdesk.core import VectorStoreException
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass
class IndexEntry:
    """One article embedding held by the index."""
    article_id: str
    embedding: List[float]
    is_published: bool = False


@dataclass
class SimilarityHit:
    """Result from a similarity search."""
    article_id: str
    similarity: float


def cosine_similarity(a: List[float], b: List[float]) -> float:
    """
    Compute cosine similarity between two vectors.

    Returns a value in [-1, 1]; 0.0 if either vector has zero norm.
    """
    a_arr = np.asarray(a, dtype=float)
    b_arr = np.asarray(b, dtype=float)

    norm_a = np.linalg.norm(a_arr)
    norm_b = np.linalg.norm(b_arr)

    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = float(np.dot(a_arr, b_arr) / (norm_a * norm_b))
    # Float error can push self-similarity a hair past 1
    return max(-1.0, min(1.0, similarity))


class ISimilarityIndex(ABC):
    """
    Interface for similarity index operations.

    Following Interface Segregation and Dependency Inversion principles.
    """

    @abstractmethod
    async def load(self, entries: Iterable[IndexEntry]) -> None:
        """Replace the index contents (startup hydration)."""

    @abstractmethod
    async def upsert(self, article_id: str, embedding: List[float], is_published: bool = False) -> None:
        """Insert or replace an article's embedding."""

    @abstractmethod
    async def remove(self, article_id: str) -> None:
        """Remove an article. Unknown ids are ignored."""

    @abstractmethod
    async def search(
        self,
        query_embedding: List[float],
        k: int = 5,
        published_only: bool = False
    ) -> List[SimilarityHit]:
        """Return up to k hits sorted by descending similarity."""

    @abstractmethod
    async def count(self) -> int:
        """Number of articles in the index."""


class InMemorySimilarityIndex(ISimilarityIndex):
    """
    numpy implementation of the similarity index.

    Vectors are stored pre-normalised so a search is one matrix-vector
    product. Adequate for knowledge bases of tens of thousands of articles.
    """

    def __init__(self, dimension: Optional[int] = None):
        self._dimension = dimension
        self._vectors: Dict[str, np.ndarray] = {}
        self._published: Dict[str, bool] = {}

    def _normalise(self, embedding: List[float]) -> np.ndarray:
        vector = np.asarray(embedding, dtype=float)
        if vector.ndim != 1 or vector.size == 0:
            raise VectorStoreException("Embedding must be a non-empty 1-D vector")
        if self._dimension is None:
            self._dimension = vector.size
        elif vector.size != self._dimension:
            raise VectorStoreException(
                f"Embedding dimension {vector.size} does not match index dimension {self._dimension}"
            )
        norm = np.linalg.norm(vector)
        return vector / norm if norm > 0 else vector

    async def load(self, entries: Iterable[IndexEntry]) -> None:
        self._vectors.clear()
        self._published.clear()
        for entry in entries:
            self._vectors[entry.article_id] = self._normalise(entry.embedding)
            self._published[entry.article_id] = entry.is_published
        logger.info("Similarity index loaded", extra={"articles": len(self._vectors)})

    async def upsert(self, article_id: str, embedding: List[float], is_published: bool = False) -> None:
        self._vectors[article_id] = self._normalise(embedding)
        self._published[article_id] = is_published

    async def remove(self, article_id: str) -> None:
        self._vectors.pop(article_id, None)
        self._published.pop(article_id, None)

    async def search(
        self,
        query_embedding: List[float],
        k: int = 5,
        published_only: bool = False
    ) -> List[SimilarityHit]:
        """
        Rank indexed articles against a query vector.

        Args:
            query_embedding: Query vector
            k: Maximum number of hits
            published_only: Restrict to published articles (retrieval)

        Returns:
            Hits sorted by descending similarity, ties broken by article id
        """
        if k <= 0 or not self._vectors:
            return []

        ids = [
            article_id for article_id in self._vectors
            if not published_only or self._published.get(article_id, False)
        ]
        if not ids:
            return []

        query = self._normalise(query_embedding)
        matrix = np.vstack([self._vectors[article_id] for article_id in ids])
        scores = np.clip(matrix @ query, -1.0, 1.0)

        ranked: List[Tuple[str, float]] = sorted(
            zip(ids, (float(s) for s in scores)),
            key=lambda pair: (-pair[1], pair[0])
        )
        return [SimilarityHit(article_id=a, similarity=s) for a, s in ranked[:k]]

    async def count(self) -> int:
        return len(self._vectors)


class MilvusSimilarityIndex(ISimilarityIndex):
    """
    Zilliz Cloud (Managed Milvus) implementation of the similarity index.

    The collection uses the COSINE metric, so hit distances are already
    cosine similarities.
    """

    def __init__(
        self,
        collection_name: Optional[str] = None,
        uri: Optional[str] = None,
        api_key: Optional[str] = None
    ):
        self._collection_name = collection_name or settings.milvus_collection_name
        self._dimension = settings.embedding_dimension
        self._uri = uri or settings.zilliz_uri
        self._api_key = api_key or settings.zilliz_api_key
        self._client: Optional[MilvusClient] = None

    def _get_client(self) -> MilvusClient:
        if self._client is not None:
            return self._client

        if not self._uri:
            raise VectorStoreException("ZILLIZ_URI not configured")

        try:
            client = MilvusClient(uri=self._uri, token=self._api_key)
            if not client.has_collection(self._collection_name):
                client.create_collection(
                    collection_name=self._collection_name,
                    dimension=self._dimension,
                    primary_field_name="article_id",
                    id_type="string",
                    max_length=64,
                    vector_field_name="vector",
                    metric_type="COSINE",
                )
        except Exception as e:
            raise VectorStoreException(f"Failed to initialize Milvus: {str(e)}")

        self._client = client
        return client

    async def load(self, entries: Iterable[IndexEntry]) -> None:
        # Milvus is durable; re-upsert so rows written while it was down are present
        entries = list(entries)
        if not entries:
            return
        try:
            self._get_client().upsert(
                collection_name=self._collection_name,
                data=[self._row(e.article_id, e.embedding, e.is_published) for e in entries]
            )
        except VectorStoreException:
            raise
        except Exception as e:
            raise VectorStoreException(f"Failed to load embeddings: {str(e)}")
        logger.info("Milvus index synchronised", extra={"articles": len(entries)})

    @staticmethod
    def _row(article_id: str, embedding: List[float], is_published: bool) -> dict:
        return {"article_id": article_id, "vector": embedding, "is_published": is_published}

    async def upsert(self, article_id: str, embedding: List[float], is_published: bool = False) -> None:
        try:
            self._get_client().upsert(
                collection_name=self._collection_name,
                data=[self._row(article_id, embedding, is_published)]
            )
        except VectorStoreException:
            raise
        except Exception as e:
            raise VectorStoreException(f"Failed to upsert embedding: {str(e)}")

    async def remove(self, article_id: str) -> None:
        try:
            self._get_client().delete(collection_name=self._collection_name, ids=[article_id])
        except VectorStoreException:
            raise
        except Exception as e:
            raise VectorStoreException(f"Failed to remove embedding: {str(e)}")

    async def search(
        self,
        query_embedding: List[float],
        k: int = 5,
        published_only: bool = False
    ) -> List[SimilarityHit]:
        """
        Search for similar articles.

        Args:
            query_embedding: Query vector
            k: Number of results to return
            published_only: Restrict to published articles

        Returns:
            List of SimilarityHit sorted by descending similarity

        Raises:
            VectorStoreException: If search fails
        """
        if k <= 0:
            return []
        try:
            results = self._get_client().search(
                collection_name=self._collection_name,
                data=[query_embedding],
                limit=k,
                filter="is_published == true" if published_only else "",
                search_params={"metric_type": "COSINE"},
            )
        except VectorStoreException:
            raise
        except Exception as e:
            raise VectorStoreException(f"Search failed: {str(e)}")

        hits = []
        if results and len(results) > 0:
            for hit in results[0]:
                hits.append(SimilarityHit(article_id=str(hit["id"]), similarity=float(hit["distance"])))
        hits.sort(key=lambda h: (-h.similarity, h.article_id))
        return hits

    async def count(self) -> int:
        try:
            stats = self._get_client().get_collection_stats(self._collection_name)
        except VectorStoreException:
            raise
        except Exception as e:
            raise VectorStoreException(f"Failed to count embeddings: {str(e)}")
        return int(stats.get("row_count", 0))


def create_similarity_index(backend: Optional[str] = None) -> ISimilarityIndex:
    """Build the configured similarity index backend."""
    backend = backend or settings.vector_backend
    if backend == "milvus":
        return MilvusSimilarityIndex()
    return InMemorySimilarityIndex(dimension=settings.embedding_dimension)
